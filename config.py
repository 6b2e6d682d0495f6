"""
Tideflow - Configuration
Central configuration for tide/current stations, API endpoints and engine constants.
"""

import os as _os
from dataclasses import dataclass
from typing import Dict, List, Optional

# ============================================================================
# STATION CONFIGURATION
# ============================================================================


@dataclass
class TideStationConfig:
    """Tide gauge exposed by the API. Fallback bounds live in MAX/MIN_TIDAL_RANGE_CM."""
    code: str
    name: str
    default_current_station: Optional[str] = None
    enabled: bool = True


@dataclass
class CurrentStationConfig:
    """Current-meter station."""
    code: str
    name: str
    enabled: bool = True


# Maximum spring-tide range per gauge. Only stations with a measured neap floor
# carry an explicit min; everyone else uses FALLBACK_MIN_RATIO.
MAX_TIDAL_RANGE_CM: Dict[str, float] = {
    # Incheon / Gyeonggi
    "DT_0001": 900, "DT_0052": 880, "DT_0044": 870, "DT_0032": 850,
    "DT_0043": 850, "DT_0093": 860, "DT_0065": 800, "DT_0066": 780,
    "DT_0002": 850, "DT_0008": 870,
    # Chungnam / Jeonbuk
    "DT_0050": 700, "DT_0067": 650, "DT_0017": 750, "DT_0025": 750,
    "DT_0051": 650, "DT_0024": 650, "DT_0018": 600, "DT_0068": 450, "DT_0037": 400,
    # Jeonnam west
    "DT_0007": 400, "DT_0035": 300, "DT_0094": 350,
    # Jeonnam east
    "DT_0028": 350, "DT_0027": 350, "DT_0026": 350, "DT_0092": 320,
    "DT_0016": 300, "DT_0049": 300, "DT_0031": 250,
    # South coast / Gyeongnam
    "DT_0061": 250, "DT_0014": 200, "DT_0003": 200, "DT_0029": 200,
    "DT_0063": 180, "DT_0062": 180, "DT_0056": 150,
    "DT_0013": 150, "DT_0033": 180, "DT_0015": 150, "DT_0048": 130, "DT_0030": 120,
    # Busan / Ulsan
    "DT_0005": 120, "DT_0020": 50,
    # East coast
    "DT_0091": 30, "DT_0039": 30, "DT_0011": 30, "DT_0057": 30,
    "DT_0006": 35, "DT_0012": 30,
    "DT_0019": 30, "DT_0034": 30, "DT_0036": 25,
    # Jeju
    "DT_0004": 250, "DT_0022": 200, "DT_0010": 200, "DT_0023": 200, "DT_0021": 350,
    # Offshore
    "DT_0042": 300, "IE_0060": 200, "IE_0061": 350, "IE_0062": 800,
}

MIN_TIDAL_RANGE_CM: Dict[str, float] = {
    "DT_0017": 150,
    "DT_0025": 150,
    "DT_0031": 55,
}

# Used when a station is missing from the table altogether
GENERIC_MAX_RANGE_CM = 300
FALLBACK_MIN_RATIO = 0.2

TIDE_STATIONS: Dict[str, TideStationConfig] = {
    "DT_0017": TideStationConfig(code="DT_0017", name="Daesan", default_current_station="07DS02"),
    "DT_0025": TideStationConfig(code="DT_0025", name="Boryeong", default_current_station="16LTC03"),
    "DT_0031": TideStationConfig(code="DT_0031", name="Mohang", default_current_station="16LTC01"),
    "DT_0001": TideStationConfig(code="DT_0001", name="Incheon"),
    "DT_0050": TideStationConfig(code="DT_0050", name="Taean"),
    "DT_0018": TideStationConfig(code="DT_0018", name="Gunsan"),
    "DT_0007": TideStationConfig(code="DT_0007", name="Mokpo"),
    "DT_0016": TideStationConfig(code="DT_0016", name="Yeosu"),
    "DT_0005": TideStationConfig(code="DT_0005", name="Busan"),
    "DT_0004": TideStationConfig(code="DT_0004", name="Jeju"),
}

CURRENT_STATIONS: Dict[str, CurrentStationConfig] = {
    "07DS02": CurrentStationConfig(code="07DS02", name="Daesan Port"),
    "16LTC01": CurrentStationConfig(code="16LTC01", name="Taean West 1"),
    "16LTC02": CurrentStationConfig(code="16LTC02", name="Taean West 2"),
    "16LTC03": CurrentStationConfig(code="16LTC03", name="Taean West 3"),
}


def get_active_stations() -> Dict[str, TideStationConfig]:
    """Get only enabled tide stations."""
    return {k: v for k, v in TIDE_STATIONS.items() if v.enabled}


# ============================================================================
# API ENDPOINTS
# ============================================================================

# data.go.kr ocean forecast API (or a proxy exposing the same paths)
TIDE_API_BASE_URL = _os.environ.get("TIDEFLOW_API_BASE", "http://apis.data.go.kr/1192136")
TIDE_API_SERVICE_KEY = _os.environ.get("TIDEFLOW_SERVICE_KEY", "")
TIDE_EXTREMA_PATH = "tideFcstHghLw/GetTideFcstHghLwApiService"
CURRENT_SERIES_PATH = "crntFcstTime/GetCrntFcstTimeApiService"

# Optional endpoint returning {"dailyMaxSpeeds": [...]} for a +/-15 day window
CURRENT_WINDOW_URL = _os.environ.get("TIDEFLOW_CURRENT_WINDOW_URL", "")

TIDE_EXTREMA_ROWS = 20
CURRENT_SERIES_ROWS = 300
CURRENT_SERIES_MAX_PAGES = 5

HTTP_TIMEOUT_SECONDS = 15.0

# ============================================================================
# FETCH POOL & RETRY
# ============================================================================

FETCH_WORKERS = int(_os.environ.get("TIDEFLOW_FETCH_WORKERS", "4"))
FETCH_MAX_ATTEMPTS = int(_os.environ.get("TIDEFLOW_FETCH_ATTEMPTS", "3"))
FETCH_BACKOFF_SECONDS = 0.25
FETCH_BACKOFF_CAP_SECONDS = 8.0
FETCH_BACKOFF_JITTER_SECONDS = 0.25
RETRY_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

# ============================================================================
# WINDOWED STATISTICS
# ============================================================================

WINDOW_HALF_WIDTH_DAYS = 15
WINDOW_MIN_COUNT = 3
DAYLIGHT_START = "05:00"
DAYLIGHT_END = "18:00"

# ============================================================================
# CACHE
# ============================================================================

CACHE_TTL_SECONDS = 24 * 60 * 60
CACHE_CAPACITY = int(_os.environ.get("TIDEFLOW_CACHE_CAPACITY", "10"))
# Empty -> memory only
CACHE_DB_PATH = _os.environ.get("TIDEFLOW_CACHE_DB", "")

# ============================================================================
# BLEND DEFAULTS
# ============================================================================

DEFAULT_RANGE_WEIGHT = 0.92
DEFAULT_CURRENT_WEIGHT = 0.08
DEFAULT_DELTA_MIN = -10
DEFAULT_DELTA_MAX = 14

# Weights in use before the last calibration, kept for comparison runs
PREVIOUS_RANGE_WEIGHT = 0.78
PREVIOUS_CURRENT_WEIGHT = 0.22

# Saved calibration JSON to load instead of the defaults (optional)
BLEND_PARAMETERS_PATH = _os.environ.get("TIDEFLOW_BLEND_PARAMS", "")

# ============================================================================
# CALIBRATION
# ============================================================================

CURRENT_WEIGHT_GRID = (0.0, 0.5, 0.01)
DELTA_MIN_GRID = (-15, 0, 1)
DELTA_MAX_GRID = (8, 20, 1)

AUTOCORRELATION_MAX_LAG = 60
PHASE_CYCLE_LENGTH = 15
SYNODIC_MONTH_DAYS = 29.53058867


@dataclass
class CalibrationScenario:
    """Tide gauge paired with candidate current stations and a reference file."""
    key: str
    tide_station: str
    current_stations: List[str]
    reference_path: str


CALIBRATION_SCENARIOS: Dict[str, CalibrationScenario] = {
    "daesan": CalibrationScenario(
        key="daesan",
        tide_station="DT_0017",
        current_stations=["07DS02", "16LTC03", "16LTC01", "16LTC02"],
        reference_path="data/reference/daesan.json",
    ),
    "mohang": CalibrationScenario(
        key="mohang",
        tide_station="DT_0031",
        current_stations=["16LTC01", "16LTC03", "16LTC02", "07DS02"],
        reference_path="data/reference/mohang.json",
    ),
}

CALIBRATION_OUTPUT_DIR = "data/calibration_results"
REPORT_OUTPUT_DIR = "data/reports"

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv
from loguru import logger

# Load environment variables from .env file if it exists
load_dotenv()

# Paths
PROJ_ROOT = Path(__file__).resolve().parents[1]
logger.info(f"PROJ_ROOT path is: {PROJ_ROOT}")

DATA_DIR = Path(os.getenv("POLLING_DISTANCE_DATA_DIR", PROJ_ROOT / "data"))
RAW_DATA_DIR = DATA_DIR / "raw"

REPORTS_DIR = PROJ_ROOT / "reports"
FIGURES_DIR = REPORTS_DIR / "figures"

DISTRICTS_DIR = RAW_DATA_DIR / "wahlbezirke_2021"
DISTRICTS_SHP_FILE = DISTRICTS_DIR / "RBS_OD_WLB_2021.shp"

STATIONS_DIR = RAW_DATA_DIR / "wahllokale_2021"
STATIONS_SHP_FILE = STATIONS_DIR / "Wahllokale_BTW2021.shp"

RESULTS_XLSX = RAW_DATA_DIR / "DL_BE_EE_WB_BU2021.xlsx"
RESULTS_SHEET = "BU2021_Wahlbezirke"

# Einwohnerdichte 2021 (FIS-Broker)
DENSITY_WFS_URL = os.getenv(
    "POLLING_DISTANCE_DENSITY_URL",
    "https://fbinter.stadt-berlin.de/fb/wfs/data/senstadt/s06_06ewdichte2021",
)
DENSITY_TYPE_NAME = "fis:s06_06ewdichte2021"

# ETRS89 / UTM zone 33N, metres
ANALYSIS_CRS = "EPSG:25833"
SOURCE_CRS = "EPSG:25833"


@dataclass(frozen=True)
class Columns:
    # District polygons: combined key is canonical here
    district_key: str = "wlb"
    # Polling stations: split, prefixed fields + postal flag
    station_borough: str = "bez"
    station_subdistrict: str = "wahlbezirk"
    station_postal_flag: str = "briefwahl"
    postal_flag_values: tuple = ("1", "true", "ja", "j", "x", "yes")
    # Results spreadsheet (after stdcols)
    results_borough: str = "bezirksnummer"
    results_subdistrict: str = "wahlbezirk"
    results_registered: str = "wahlberechtigte_insgesamt"
    results_voters: str = "wählende"
    # Density blocks
    density_population: str = "ew2021"

    # Canonical names used after the merge
    key: str = "key"
    district_geometry: str = "district_geometry"
    station_geometry: str = "station_geometry"
    registered: str = "registered"
    voters: str = "voters"
    turnout: str = "turnout"
    dist_centroid: str = "dist_centroid"
    dist_weighted: str = "dist_weighted"


@dataclass(frozen=True)
class ModelParams:
    n_sim: int = 100
    permutations: int = 999
    random_seed: int = 42
    alpha: float = 0.05
    weights_style: str = "r"
    ml_method: str = "full"


@dataclass(frozen=True)
class FetchParams:
    timeout: float = 60.0
    max_retries: int = 3
    backoff: float = 2.0
    retry_status: tuple = (429, 500, 502, 503, 504)


@dataclass(frozen=True)
class Paths:
    districts: Path = DISTRICTS_SHP_FILE
    stations: Path = STATIONS_SHP_FILE
    results: Path = RESULTS_XLSX
    results_sheet: str = RESULTS_SHEET
    density_source: str = DENSITY_WFS_URL
    figures_dir: Path = FIGURES_DIR


# If tqdm is installed, configure loguru with tqdm.write
# https://github.com/Delgan/loguru/issues/135
try:
    from tqdm import tqdm

    logger.remove(0)
    logger.add(lambda msg: tqdm.write(msg, end=""), colorize=True)
except ModuleNotFoundError:
    pass

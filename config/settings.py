"""
Regional Listing Prices - Configuration Settings
"""
import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# ============================================================================
# PATHS
# ============================================================================
PROJECT_ROOT = Path(__file__).parent.parent
DATA_RAW = PROJECT_ROOT / "data" / "raw"
DATA_PROCESSED = PROJECT_ROOT / "data" / "processed"
REPORTS_DATA_DIR = PROJECT_ROOT / "reports" / "data"

LISTINGS_PATH = Path(os.getenv("LISTINGS_PATH", DATA_RAW / "dataset_items.csv"))
REGIONS_PATH = Path(os.getenv("REGIONS_PATH", DATA_RAW / "uzemi.csv"))
OUTPUT_PATH = Path(os.getenv("OUTPUT_PATH", DATA_PROCESSED / "region_price_per_m2.csv"))

# ============================================================================
# SOURCE SCHEMA
# ============================================================================
# Apify dataset-items export -> canonical column names
RAW_COLUMN_MAP = {
    "id": "listing_id",
    "createdAt": "created_at",
    "data_offerType": "offer_type",
    "data_type": "property_type",
    "data_priceTotal": "price_total",
    "data_livingArea": "living_area",
    "data_district": "district",
    "data_gpsCoord_lat": "latitude",
    "data_gpsCoord_lon": "longitude",
}

LISTING_COLUMNS = list(RAW_COLUMN_MAP.values())

# UZEMI administrative reference table
REGION_DISTRICT_COLUMN = "okres_text"
REGION_NAME_COLUMN = "kraj_text"

# Listing district spellings that differ from the reference table.
# Keys are lowercase; matching is whole-value and case-insensitive.
DISTRICT_EXCEPTIONS = {
    "hlavní město praha": "Praha",
    "ostrava": "Ostrava-město",
}

# Values treated the same as NULL in raw text fields
MISSING_TOKENS = ("", ".")

# ============================================================================
# DATA QUALITY THRESHOLDS
# ============================================================================
PROPERTY_TYPES = ("apartment", "house")
OFFER_TYPES = ("sale", "rent")

MIN_LIVING_AREA = 16  # minimum legal living area (m2)
MAX_LIVING_AREA = 500

# Approximate bounding box of the Czech Republic
LATITUDE_RANGE = (48.5, 51.1)
LONGITUDE_RANGE = (12.0, 18.9)

# Price per m2 by offer type (CZK; rent is per month)
PRICE_PER_AREA_RANGES = {
    "rent": (50, 1_500),
    "sale": (5_000, 300_000),
}

# ============================================================================
# OUTPUT
# ============================================================================
GROUP_KEYS = ["year", "region", "offer_type", "property_type"]

OUTPUT_COLUMNS = GROUP_KEYS + [
    "mean_price_per_area",
    "median_price_per_area",
    "row_count",
]

# ============================================================================
# DATABASE
# ============================================================================
DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{DATA_PROCESSED / 'region_prices.db'}")

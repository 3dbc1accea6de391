"""
Field normalization for raw listings.

Every helper here is total: unparseable values become NULL instead of
raising, and rows with NULLs are dropped later by whichever filter needs
the field.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import numpy as np
import pandas as pd

from config.settings import DISTRICT_EXCEPTIONS, MISSING_TOKENS

logger = logging.getLogger(__name__)


def as_text(values: pd.Series) -> pd.Series:
    """Object series holding str or NaN, so the .str accessor is always usable."""
    text = values.astype(object).map(lambda v: v if isinstance(v, str) else (np.nan if pd.isna(v) else str(v)))
    return text.astype(object)


def is_missing(values: pd.Series) -> pd.Series:
    """NULL, empty string and '.' all count as missing."""
    text = as_text(values).str.strip()
    return text.isna() | text.isin(MISSING_TOKENS)


# =============================================================================
# NUMERIC COERCION
# =============================================================================

def coerce_numeric(values: pd.Series) -> pd.Series:
    """
    Coerce a raw column to float64.

    '' and '.' are treated like NULL; any other non-numeric text becomes NaN.
    """
    if pd.api.types.is_numeric_dtype(values) and not pd.api.types.is_bool_dtype(values):
        return pd.to_numeric(values, errors="coerce").astype("float64")

    text = as_text(values).str.strip()
    text = text.mask(text.isin(MISSING_TOKENS))
    return pd.to_numeric(text, errors="coerce").astype("float64")


def to_number(value: Any) -> Optional[float]:
    """Scalar form of coerce_numeric."""
    result = coerce_numeric(pd.Series([value], dtype=object)).iloc[0]
    return None if pd.isna(result) else float(result)


def _local_year(value: str) -> Optional[int]:
    try:
        ts = pd.Timestamp(value)
    except (ValueError, TypeError, OverflowError):
        return None
    return None if pd.isna(ts) else ts.year


def extract_year(values: pd.Series) -> pd.Series:
    """
    Calendar year of a timestamp column; unparseable -> <NA>.

    The year is read from the clock time as written. An offset such as
    '+01:00' is dropped, not converted to UTC.
    """
    text = as_text(values).str.strip()
    years = {value: _local_year(value) for value in text.dropna().unique()}
    return pd.to_numeric(text.map(years), errors="coerce").astype("Int64")


# =============================================================================
# DISTRICTS
# =============================================================================

def apply_district_exceptions(values: pd.Series) -> pd.Series:
    """Replace the known listing-portal spellings with the reference spelling."""
    text = as_text(values)
    replaced = text.str.lower().map(DISTRICT_EXCEPTIONS)
    return replaced.where(replaced.notna(), text)


def district_keys(values: pd.Series) -> pd.Series:
    """
    Join key for district names.

    Trim, drop whitespace around hyphens, collapse whitespace runs, lowercase.
    Applying it twice gives the same result as applying it once.
    """
    keys = (
        as_text(values)
        .str.strip()
        .str.replace(r"\s*-\s*", "-", regex=True)
        .str.replace(r"\s+", " ", regex=True)
        .str.lower()
    )
    return keys.mask(keys == "")


def normalize_district_key(value: Any) -> Optional[str]:
    """Scalar form of district_keys."""
    key = district_keys(pd.Series([value], dtype=object)).iloc[0]
    return None if pd.isna(key) else key


# =============================================================================
# STAGE
# =============================================================================

def normalize_listings(df: pd.DataFrame) -> pd.DataFrame:
    """
    Derive cleaned fields from raw listing text:
    - year from created_at
    - district_raw (exception-mapped) and district_key
    - price_total / living_area as floats
    """
    df = df.copy()

    df["year"] = extract_year(df["created_at"])
    df["district_raw"] = apply_district_exceptions(df["district"])
    df["district_key"] = district_keys(df["district_raw"])

    raw_price = df["price_total"]
    raw_area = df["living_area"]
    df["price_total"] = coerce_numeric(raw_price)
    df["living_area"] = coerce_numeric(raw_area)

    bad_price = int((df["price_total"].isna() & ~is_missing(raw_price)).sum())
    bad_area = int((df["living_area"].isna() & ~is_missing(raw_area)).sum())
    logger.info(
        f"Normalized {len(df):,} listings "
        f"(missing year: {int(df['year'].isna().sum()):,}, "
        f"non-numeric price: {bad_price:,}, non-numeric area: {bad_area:,})"
    )

    return df

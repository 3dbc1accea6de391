"""
Data quality profile of the listings table.

Diagnostic counts that explain where rows are lost: missing values in the
key fields, implausible living areas and prices, and coordinate coverage.
Nothing here changes the data.
"""

from __future__ import annotations

from typing import Dict, Iterable, Optional

import numpy as np
import pandas as pd

from listing_prices.filters import FilterConfig
from listing_prices.normalize import coerce_numeric, is_missing

PROFILE_COLUMNS = ["price_total", "living_area", "district", "latitude", "longitude"]


def profile_missing_values(df: pd.DataFrame, columns: Optional[Iterable[str]] = None) -> pd.DataFrame:
    """NULL / '' / '.' counts per column, worst first."""
    total = len(df)
    rows = []
    for col in columns or PROFILE_COLUMNS:
        if col not in df.columns:
            continue
        nulls = int(is_missing(df[col]).sum())
        rows.append(
            {
                "column_name": col,
                "nulls": nulls,
                "total": total,
                "null_pct": round(nulls * 100.0 / total, 2) if total else np.nan,
            }
        )
    profile = pd.DataFrame(rows, columns=["column_name", "nulls", "total", "null_pct"])
    return profile.sort_values("null_pct", ascending=False, kind="mergesort").reset_index(drop=True)


def combine_missing_profiles(profiles: Iterable[pd.DataFrame]) -> pd.DataFrame:
    """Merge per-chunk missing-value profiles into one for the whole input."""
    frames = [p for p in profiles if not p.empty]
    if not frames:
        return pd.DataFrame(columns=["column_name", "nulls", "total", "null_pct"])
    merged = (
        pd.concat(frames, ignore_index=True)
        .groupby("column_name", sort=False)[["nulls", "total"]]
        .sum()
        .reset_index()
    )
    merged["null_pct"] = (merged["nulls"] * 100.0 / merged["total"].where(merged["total"] > 0)).round(2)

    # ties keep PROFILE_COLUMNS order, as in a single-frame profile
    position = merged["column_name"].map({col: i for i, col in enumerate(PROFILE_COLUMNS)})
    merged["position"] = position.fillna(len(PROFILE_COLUMNS))
    merged = merged.sort_values(["null_pct", "position"], ascending=[False, True], kind="mergesort")
    return merged.drop(columns="position").reset_index(drop=True)


def combine_counts(counts: Iterable[Dict[str, int]]) -> Dict[str, int]:
    """Sum category counts label by label, keeping first-seen label order."""
    total: Dict[str, int] = {}
    for chunk_counts in counts:
        for label, count in chunk_counts.items():
            total[label] = total.get(label, 0) + count
    return total


def _counts(categories: pd.Series, labels: Iterable[str]) -> Dict[str, int]:
    counts = categories.value_counts()
    return {label: int(counts.get(label, 0)) for label in labels}


def categorize_living_area(df: pd.DataFrame, config: Optional[FilterConfig] = None) -> Dict[str, int]:
    config = config or FilterConfig()
    low, high = config.living_area_range
    area = coerce_numeric(df["living_area"])
    categories = np.select(
        [is_missing(df["living_area"]), area < low, area > high, area.notna()],
        ["missing", "suspiciously_small", "suspiciously_large", "ok"],
        default="non_numeric",
    )
    return _counts(
        pd.Series(categories, index=df.index),
        ["missing", "suspiciously_small", "suspiciously_large", "ok", "non_numeric"],
    )


def categorize_price(df: pd.DataFrame) -> Dict[str, int]:
    price = coerce_numeric(df["price_total"])
    categories = np.select(
        [is_missing(df["price_total"]), price <= 0, price.notna()],
        ["missing", "invalid_zero_or_neg", "ok"],
        default="non_numeric",
    )
    return _counts(
        pd.Series(categories, index=df.index),
        ["missing", "invalid_zero_or_neg", "ok", "non_numeric"],
    )


def categorize_coordinates(df: pd.DataFrame, config: Optional[FilterConfig] = None) -> Dict[str, int]:
    config = config or FilterConfig()
    lat_low, lat_high = config.latitude_range
    lon_low, lon_high = config.longitude_range
    lat = coerce_numeric(df["latitude"])
    lon = coerce_numeric(df["longitude"])
    missing = is_missing(df["latitude"]) | is_missing(df["longitude"])
    inside = lat.between(lat_low, lat_high) & lon.between(lon_low, lon_high)
    categories = np.select([missing, inside], ["missing", "valid_range"], default="out_of_range")
    return _counts(pd.Series(categories, index=df.index), ["missing", "valid_range", "out_of_range"])


def summarize_offer_types(df: pd.DataFrame) -> pd.DataFrame:
    """Price-per-m2 range and mean per offer type, regardless of region."""
    if df.empty:
        return pd.DataFrame(
            columns=["offer_type", "min_price_per_area", "max_price_per_area", "mean_price_per_area", "row_count"]
        )
    summary = (
        df.groupby("offer_type")["price_per_area"]
        .agg(
            min_price_per_area="min",
            max_price_per_area="max",
            mean_price_per_area="mean",
            row_count="size",
        )
        .reset_index()
    )
    return summary.sort_values("offer_type").reset_index(drop=True)

"""Regional price-per-m2 statistics."""

from __future__ import annotations

import logging

import pandas as pd

from config.settings import GROUP_KEYS, OUTPUT_COLUMNS

logger = logging.getLogger(__name__)


def _upper_region(values: pd.Series) -> pd.Series:
    return values.astype(object).map(lambda v: v.upper() if isinstance(v, str) else None)


def sort_aggregates(df: pd.DataFrame) -> pd.DataFrame:
    """Year, region (NULL first), offer type, property type - all ascending."""
    return df.sort_values(GROUP_KEYS, na_position="first", kind="mergesort").reset_index(drop=True)


def aggregate_prices(df: pd.DataFrame) -> pd.DataFrame:
    """
    Mean, median and count of price_per_area per
    (year, region, offer_type, property_type).

    Region labels are uppercased before grouping, so 'Praha' and 'PRAHA'
    land in the same group. Listings without a region form their own group;
    listings without a year cannot be placed and are dropped.
    """
    frame = df.loc[:, GROUP_KEYS + ["price_per_area"]].copy()

    no_year = frame["year"].isna()
    if no_year.any():
        logger.warning(f"Dropping {int(no_year.sum()):,} listings without a creation year")
        frame = frame.loc[~no_year].copy()

    frame["region"] = _upper_region(frame["region"])
    frame["year"] = frame["year"].astype("int64")

    if frame.empty:
        logger.info("No listings left to aggregate")
        return pd.DataFrame(columns=OUTPUT_COLUMNS)

    grouped = frame.groupby(GROUP_KEYS, dropna=False, sort=False)["price_per_area"]
    out = grouped.agg(
        mean_price_per_area="mean",
        median_price_per_area="median",
        row_count="size",
    ).reset_index()
    out["row_count"] = out["row_count"].astype("int64")

    out = sort_aggregates(out)[OUTPUT_COLUMNS].copy()
    out["region"] = pd.Series(
        [r if isinstance(r, str) else None for r in out["region"]], index=out.index, dtype=object
    )
    logger.info(f"Aggregated {len(frame):,} listings into {len(out):,} groups")
    return out

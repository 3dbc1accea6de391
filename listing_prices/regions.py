"""District -> region resolution against the UZEMI reference table."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Mapping, Optional

import numpy as np
import pandas as pd

from config.settings import REGION_DISTRICT_COLUMN, REGION_NAME_COLUMN
from listing_prices.normalize import as_text, district_keys

logger = logging.getLogger(__name__)


class RegionLookupError(ValueError):
    """Raised when the reference table cannot be turned into a lookup."""


@dataclass(frozen=True)
class RegionLookup:
    """Read-only map from normalized district key to district and region labels."""

    districts: Mapping[str, str]
    regions: Mapping[str, str]

    @classmethod
    def from_frame(
        cls,
        reference: pd.DataFrame,
        *,
        district_col: str = REGION_DISTRICT_COLUMN,
        region_col: str = REGION_NAME_COLUMN,
    ) -> "RegionLookup":
        missing = [col for col in (district_col, region_col) if col not in reference.columns]
        if missing:
            raise RegionLookupError(f"Region reference is missing columns: {', '.join(missing)}")

        frame = pd.DataFrame(
            {
                "district": as_text(reference[district_col]).str.strip(),
                "region": as_text(reference[region_col]).str.strip(),
            }
        )
        frame = frame.mask(frame == "")
        frame["key"] = district_keys(frame["district"])
        frame = frame.dropna(subset=["key", "region"]).drop_duplicates(subset=["key", "region"])

        conflicts = frame.groupby("key")["region"].nunique()
        conflicts = conflicts[conflicts > 1]
        if not conflicts.empty:
            sample = ", ".join(conflicts.index[:5])
            raise RegionLookupError(
                f"{len(conflicts):,} district keys map to more than one region (e.g. {sample})"
            )

        frame = frame.drop_duplicates(subset=["key"], keep="first")
        logger.info(
            f"Built region lookup: {len(frame):,} districts in {frame['region'].nunique():,} regions"
        )
        return cls(
            districts=MappingProxyType(dict(zip(frame["key"], frame["district"]))),
            regions=MappingProxyType(dict(zip(frame["key"], frame["region"]))),
        )

    def region_for(self, district_key: Optional[str]) -> Optional[str]:
        return self.regions.get(district_key) if district_key is not None else None

    def __len__(self) -> int:
        return len(self.regions)


def load_region_reference(path: Path) -> pd.DataFrame:
    """Load the UZEMI district/region table from CSV."""
    if not path.exists():
        raise FileNotFoundError(f"Region reference not found at {path}.")

    logger.info(f"Loading region reference from {path}...")
    reference = pd.read_csv(path, dtype=str, keep_default_na=False, na_values=[""])
    logger.info(f"Loaded {len(reference):,} reference rows")
    return reference


def join_regions(df: pd.DataFrame, lookup: RegionLookup) -> pd.DataFrame:
    """
    Left join listings to regions on district_key.

    Unmatched listings keep a NULL region. Also derives price_per_area,
    which is NULL when living_area is zero or either operand is NULL.
    """
    df = df.copy()

    df["district_label"] = df["district_key"].map(lookup.districts.get, na_action="ignore")
    df["region"] = df["district_key"].map(lookup.regions.get, na_action="ignore")

    area = df["living_area"].where(df["living_area"] != 0)
    df["price_per_area"] = (df["price_total"] / area).replace([np.inf, -np.inf], np.nan)

    unmatched = int(df["region"].isna().sum())
    logger.info(f"Joined regions: {len(df) - unmatched:,} matched, {unmatched:,} without region")

    return df

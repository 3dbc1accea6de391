"""
Row filters for joined listings.

Each predicate takes the joined frame and the active FilterConfig and returns
a boolean mask. Predicates are independent of each other; a row survives only
when every mask is True. Comparisons against NULL yield False, so a row with a
missing operand is dropped rather than raising.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Callable, Dict, List, Mapping, Tuple

import pandas as pd

from config.settings import (
    LATITUDE_RANGE,
    LONGITUDE_RANGE,
    MAX_LIVING_AREA,
    MIN_LIVING_AREA,
    OFFER_TYPES,
    PRICE_PER_AREA_RANGES,
    PROPERTY_TYPES,
)
from listing_prices.normalize import as_text, coerce_numeric, is_missing

logger = logging.getLogger(__name__)

Bounds = Tuple[float, float]


class ConfigurationError(ValueError):
    """Raised when filter bounds are malformed."""


def _check_bounds(name: str, bounds) -> Bounds:
    try:
        low, high = (float(b) for b in bounds)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{name} must be a (low, high) pair of numbers, got {bounds!r}") from e
    if math.isnan(low) or math.isnan(high) or math.isinf(low) or math.isinf(high):
        raise ConfigurationError(f"{name} bounds must be finite, got {bounds!r}")
    if low > high:
        raise ConfigurationError(f"{name} lower bound {low} exceeds upper bound {high}")
    return low, high


@dataclass(frozen=True)
class FilterConfig:
    """Validity bounds for the filter chain. All ranges are inclusive."""

    property_types: Tuple[str, ...] = PROPERTY_TYPES
    offer_types: Tuple[str, ...] = OFFER_TYPES
    living_area_range: Bounds = (MIN_LIVING_AREA, MAX_LIVING_AREA)
    latitude_range: Bounds = LATITUDE_RANGE
    longitude_range: Bounds = LONGITUDE_RANGE
    price_per_area_ranges: Mapping[str, Bounds] = field(default_factory=lambda: dict(PRICE_PER_AREA_RANGES))

    def __post_init__(self):
        if not self.property_types:
            raise ConfigurationError("property_types must not be empty")
        if not self.offer_types:
            raise ConfigurationError("offer_types must not be empty")

        object.__setattr__(self, "property_types", tuple(self.property_types))
        object.__setattr__(self, "offer_types", tuple(self.offer_types))
        object.__setattr__(self, "living_area_range", _check_bounds("living_area_range", self.living_area_range))
        object.__setattr__(self, "latitude_range", _check_bounds("latitude_range", self.latitude_range))
        object.__setattr__(self, "longitude_range", _check_bounds("longitude_range", self.longitude_range))

        ranges = {
            offer: _check_bounds(f"price_per_area_ranges[{offer!r}]", bounds)
            for offer, bounds in dict(self.price_per_area_ranges).items()
        }
        uncovered = [offer for offer in self.offer_types if offer not in ranges]
        if uncovered:
            raise ConfigurationError(f"No price_per_area range for offer types: {', '.join(uncovered)}")
        object.__setattr__(self, "price_per_area_ranges", MappingProxyType(ranges))

    def __hash__(self):
        return hash(
            (
                self.property_types,
                self.offer_types,
                self.living_area_range,
                self.latitude_range,
                self.longitude_range,
                tuple(sorted(self.price_per_area_ranges.items())),
            )
        )

    def with_price_range(self, offer_type: str, bounds: Bounds) -> "FilterConfig":
        """Copy of this config with one offer type's price-per-area range replaced."""
        ranges = dict(self.price_per_area_ranges)
        ranges[offer_type] = bounds
        return FilterConfig(
            property_types=self.property_types,
            offer_types=self.offer_types,
            living_area_range=self.living_area_range,
            latitude_range=self.latitude_range,
            longitude_range=self.longitude_range,
            price_per_area_ranges=ranges,
        )


# =============================================================================
# PREDICATES
# =============================================================================

def property_type_allowed(df: pd.DataFrame, config: FilterConfig) -> pd.Series:
    return df["property_type"].isin(config.property_types)


def offer_type_allowed(df: pd.DataFrame, config: FilterConfig) -> pd.Series:
    return df["offer_type"].isin(config.offer_types)


def living_area_in_range(df: pd.DataFrame, config: FilterConfig) -> pd.Series:
    low, high = config.living_area_range
    return coerce_numeric(df["living_area"]).between(low, high)


def price_total_positive(df: pd.DataFrame, config: FilterConfig) -> pd.Series:
    return coerce_numeric(df["price_total"]) > 0


def _coordinates_present(df: pd.DataFrame) -> pd.Series:
    return ~is_missing(df["latitude"]) & ~is_missing(df["longitude"])


def has_location(df: pd.DataFrame, config: FilterConfig) -> pd.Series:
    """Both coordinates numeric, or a non-empty district."""
    numeric_coords = coerce_numeric(df["latitude"]).notna() & coerce_numeric(df["longitude"]).notna()
    return numeric_coords | ~is_missing(df["district_raw"])


def coordinates_in_bounds(df: pd.DataFrame, config: FilterConfig) -> pd.Series:
    """Only checked when both coordinates are given."""
    lat_low, lat_high = config.latitude_range
    lon_low, lon_high = config.longitude_range
    inside = coerce_numeric(df["latitude"]).between(lat_low, lat_high) & coerce_numeric(
        df["longitude"]
    ).between(lon_low, lon_high)
    return ~_coordinates_present(df) | inside


def district_not_numeric(df: pd.DataFrame, config: FilterConfig) -> pd.Series:
    digits_only = as_text(df["district_raw"]).str.strip().str.fullmatch(r"[0-9]+")
    return ~digits_only.fillna(False).astype(bool)


def price_per_area_in_range(df: pd.DataFrame, config: FilterConfig) -> pd.Series:
    price_per_area = coerce_numeric(df["price_per_area"])
    mask = pd.Series(False, index=df.index)
    for offer_type, (low, high) in config.price_per_area_ranges.items():
        mask |= (df["offer_type"] == offer_type) & price_per_area.between(low, high)
    return mask


Predicate = Callable[[pd.DataFrame, FilterConfig], pd.Series]

PREDICATES: List[Tuple[str, Predicate]] = [
    ("property_type_allowed", property_type_allowed),
    ("offer_type_allowed", offer_type_allowed),
    ("living_area_in_range", living_area_in_range),
    ("price_total_positive", price_total_positive),
    ("has_location", has_location),
    ("coordinates_in_bounds", coordinates_in_bounds),
    ("district_not_numeric", district_not_numeric),
    ("price_per_area_in_range", price_per_area_in_range),
]


# =============================================================================
# CHAIN
# =============================================================================

def evaluate_predicates(df: pd.DataFrame, config: FilterConfig) -> pd.DataFrame:
    """One boolean column per predicate."""
    return pd.DataFrame(
        {name: predicate(df, config).to_numpy(dtype=bool) for name, predicate in PREDICATES},
        index=df.index,
    )


def apply_filters(df: pd.DataFrame, config: FilterConfig) -> Tuple[pd.DataFrame, Dict[str, int]]:
    """
    Keep rows passing every predicate.

    Returns the survivors and the number of rows each predicate rejected.
    A row failing several predicates is counted under each of them.
    """
    results = evaluate_predicates(df, config)
    keep = results.all(axis=1)
    rejections = {name: int((~results[name]).sum()) for name, _ in PREDICATES}

    filtered = df.loc[keep].copy()
    logger.info(f"Filtered listings: {len(df):,} -> {len(filtered):,} records")
    for name, count in rejections.items():
        if count:
            logger.info(f"  {name}: rejected {count:,}")

    return filtered, rejections

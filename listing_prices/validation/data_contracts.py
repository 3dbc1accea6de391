"""Data contracts for ETL reliability checks."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional

import pandas as pd

from config.settings import GROUP_KEYS, LISTING_COLUMNS, OUTPUT_COLUMNS
from listing_prices.filters import FilterConfig


RAW_REQUIRED_COLUMNS = list(LISTING_COLUMNS)

AGGREGATE_NULL_THRESHOLDS = {
    "year": 0.0,
    "offer_type": 0.0,
    "property_type": 0.0,
    "mean_price_per_area": 0.0,
    "median_price_per_area": 0.0,
    "row_count": 0.0,
}


@dataclass
class ContractViolation:
    """Represents a failed data-contract check."""

    check: str
    message: str
    failed_rows: int = 0


@dataclass
class DataContractResult:
    """Aggregated result for all checks."""

    passed: bool
    row_count: int
    checked_at: str
    violations: List[ContractViolation]


class DataContractError(ValueError):
    """Raised when one or more contract checks fail."""


def validate_data_contracts(
    df: pd.DataFrame,
    *,
    required_columns: Optional[Iterable[str]] = None,
    null_thresholds: Optional[dict[str, float]] = None,
    filter_config: Optional[FilterConfig] = None,
    raise_on_error: bool = True,
) -> DataContractResult:
    """
    Run contract checks and optionally raise on failure.

    Checks:
    - required schema columns
    - null ratio thresholds
    - aggregate domain constraints, when filter_config is given
      (allowed types, row_count, price-per-m2 ranges, output ordering)
    """
    req_cols = list(required_columns or [])
    thresholds = null_thresholds or {}

    violations: List[ContractViolation] = []
    violations.extend(_check_required_columns(df, req_cols))
    violations.extend(_check_null_thresholds(df, thresholds))
    if filter_config is not None:
        violations.extend(_check_aggregate_domain(df, filter_config))
        violations.extend(_check_sort_order(df))

    result = DataContractResult(
        passed=len(violations) == 0,
        row_count=len(df),
        checked_at=datetime.utcnow().isoformat(),
        violations=violations,
    )

    if raise_on_error and not result.passed:
        raise DataContractError(format_contract_violations(result.violations))

    return result


def validate_aggregates(
    df: pd.DataFrame,
    filter_config: FilterConfig,
    *,
    raise_on_error: bool = True,
) -> DataContractResult:
    """Contract for the final aggregate table."""
    return validate_data_contracts(
        df,
        required_columns=OUTPUT_COLUMNS,
        null_thresholds=AGGREGATE_NULL_THRESHOLDS,
        filter_config=filter_config,
        raise_on_error=raise_on_error,
    )


def format_contract_violations(violations: List[ContractViolation]) -> str:
    """Format violations into a single error message."""
    lines = ["Data contract validation failed:"]
    for v in violations:
        lines.append(f"- [{v.check}] {v.message} (failed_rows={v.failed_rows})")
    return "\n".join(lines)


def _check_required_columns(df: pd.DataFrame, required_columns: List[str]) -> List[ContractViolation]:
    missing = [col for col in required_columns if col not in df.columns]
    if not missing:
        return []
    return [
        ContractViolation(
            check="required_columns",
            message=f"Missing required columns: {', '.join(missing)}",
            failed_rows=len(df),
        )
    ]


def _check_null_thresholds(df: pd.DataFrame, null_thresholds: dict[str, float]) -> List[ContractViolation]:
    violations: List[ContractViolation] = []
    if df.empty:
        return violations
    for col, threshold in null_thresholds.items():
        if col not in df.columns:
            continue
        null_ratio = float(df[col].isna().mean())
        if null_ratio > threshold:
            violations.append(
                ContractViolation(
                    check="null_threshold",
                    message=f"{col} null ratio {null_ratio:.4f} exceeds threshold {threshold:.4f}",
                    failed_rows=int(df[col].isna().sum()),
                )
            )
    return violations


def _check_aggregate_domain(df: pd.DataFrame, config: FilterConfig) -> List[ContractViolation]:
    violations: List[ContractViolation] = []

    if "offer_type" in df.columns:
        bad_offer = ~df["offer_type"].isin(config.offer_types)
        if bad_offer.any():
            violations.append(
                ContractViolation(
                    check="domain_offer_type",
                    message=f"offer_type must be one of {', '.join(config.offer_types)}",
                    failed_rows=int(bad_offer.sum()),
                )
            )

    if "property_type" in df.columns:
        bad_property = ~df["property_type"].isin(config.property_types)
        if bad_property.any():
            violations.append(
                ContractViolation(
                    check="domain_property_type",
                    message=f"property_type must be one of {', '.join(config.property_types)}",
                    failed_rows=int(bad_property.sum()),
                )
            )

    if "row_count" in df.columns:
        empty_groups = pd.to_numeric(df["row_count"], errors="coerce").fillna(0) < 1
        if empty_groups.any():
            violations.append(
                ContractViolation(
                    check="domain_row_count",
                    message="every group must contain at least one listing",
                    failed_rows=int(empty_groups.sum()),
                )
            )

    if "offer_type" in df.columns:
        for col in ("mean_price_per_area", "median_price_per_area"):
            if col not in df.columns:
                continue
            values = pd.to_numeric(df[col], errors="coerce")
            in_range = pd.Series(False, index=df.index)
            for offer_type, (low, high) in config.price_per_area_ranges.items():
                in_range |= (df["offer_type"] == offer_type) & values.between(low, high)
            if (~in_range).any():
                violations.append(
                    ContractViolation(
                        check=f"domain_{col}",
                        message=f"{col} outside the offer type's price-per-m2 range",
                        failed_rows=int((~in_range).sum()),
                    )
                )

    return violations


def _check_sort_order(df: pd.DataFrame) -> List[ContractViolation]:
    if df.empty or not set(GROUP_KEYS).issubset(df.columns):
        return []

    expected = df.sort_values(GROUP_KEYS, na_position="first", kind="mergesort").index
    out_of_place = int((expected != df.index).sum())
    if out_of_place == 0:
        return []
    return [
        ContractViolation(
            check="sort_order",
            message=f"rows are not ordered by {', '.join(GROUP_KEYS)}",
            failed_rows=out_of_place,
        )
    ]

"""
Regional Listing Prices - ETL Pipeline

Extracts the Apify listings export and the UZEMI district/region table,
Transforms them (Deduplication + Normalization + Region join + Filtering),
Aggregates price per m2 by year, region, offer type and property type.

Usage:
    python -m listing_prices.etl --input data/raw/dataset_items.csv --regions data/raw/uzemi.csv

Known limitation: duplicate listing ids keep the first occurrence in source
order; no recency or quality signal is used to pick among duplicates.
"""

from __future__ import annotations

import argparse
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Set, Tuple

import pandas as pd

from config.settings import (
    GROUP_KEYS,
    LISTINGS_PATH,
    OUTPUT_COLUMNS,
    OUTPUT_PATH,
    RAW_COLUMN_MAP,
    REGIONS_PATH,
    REPORTS_DATA_DIR,
)
from listing_prices.aggregate import aggregate_prices
from listing_prices.filters import PREDICATES, FilterConfig, apply_filters
from listing_prices.normalize import normalize_listings
from listing_prices.profiling import (
    categorize_coordinates,
    categorize_living_area,
    categorize_price,
    combine_counts,
    combine_missing_profiles,
    profile_missing_values,
    summarize_offer_types,
)
from listing_prices.regions import RegionLookup, join_regions, load_region_reference
from listing_prices.validation.data_contracts import (
    RAW_REQUIRED_COLUMNS,
    DataContractResult,
    validate_aggregates,
    validate_data_contracts,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

STAGES = ["extract", "deduplicate", "normalize", "join_regions", "filter"]

# Columns carried from the filter stage into aggregation
AGGREGATION_INPUT_COLUMNS = GROUP_KEYS + ["price_per_area"]


# =============================================================================
# 1. EXTRACTION
# =============================================================================

def standardize_columns(df: pd.DataFrame) -> pd.DataFrame:
    """Rename Apify export columns to canonical listing names."""
    return df.rename(columns={c: RAW_COLUMN_MAP[c] for c in df.columns if c in RAW_COLUMN_MAP})


def _read_csv_kwargs() -> dict:
    return {"dtype": str, "keep_default_na": False, "na_values": [""]}


def load_raw_listings(path: Path, limit: Optional[int] = None) -> pd.DataFrame:
    """Load the raw listings export as text."""
    if not path.exists():
        raise FileNotFoundError(f"Listings not found at {path}.")

    logger.info(f"Loading raw listings from {path}...")
    df = pd.read_csv(path, nrows=limit, **_read_csv_kwargs())
    logger.info(f"Loaded {len(df):,} records")
    return df


def iter_raw_listings(path: Path, chunksize: int, limit: Optional[int] = None) -> Iterator[pd.DataFrame]:
    """Stream the raw listings export in chunks of text rows."""
    if not path.exists():
        raise FileNotFoundError(f"Listings not found at {path}.")

    logger.info(f"Streaming raw listings from {path} in chunks of {chunksize:,}...")
    with pd.read_csv(path, chunksize=chunksize, nrows=limit, **_read_csv_kwargs()) as reader:
        yield from reader


# =============================================================================
# 2. DEDUPLICATION
# =============================================================================

def deduplicate(df: pd.DataFrame, seen_ids: Optional[Set] = None) -> pd.DataFrame:
    """
    Keep one row per listing_id: the first occurrence in source order.

    seen_ids carries ids emitted by earlier chunks when streaming; it is
    updated in place with the ids kept here.
    """
    before = len(df)

    if seen_ids:
        df = df[~df["listing_id"].isin(seen_ids)]
    df = df.drop_duplicates(subset=["listing_id"], keep="first")
    if seen_ids is not None:
        seen_ids.update(df["listing_id"].tolist())

    after = len(df)
    logger.info(f"Removed duplicate listings: {before:,} -> {after:,} records ({before - after:,} removed)")

    return df


# =============================================================================
# 3. STAGE METRICS
# =============================================================================

@dataclass
class StageCounter:
    """Rows in/out per stage, summed over chunks."""

    rows_in: Dict[str, int] = field(default_factory=lambda: {s: 0 for s in STAGES})
    rows_out: Dict[str, int] = field(default_factory=lambda: {s: 0 for s in STAGES})
    rejections: Dict[str, int] = field(default_factory=lambda: {name: 0 for name, _ in PREDICATES})
    unmatched_regions: int = 0

    def record(self, stage: str, rows_in: int, rows_out: int) -> None:
        self.rows_in[stage] += rows_in
        self.rows_out[stage] += rows_out

    def add_rejections(self, rejections: Dict[str, int]) -> None:
        for name, count in rejections.items():
            self.rejections[name] = self.rejections.get(name, 0) + count

    def stage_stats(self, aggregates: Optional[pd.DataFrame] = None) -> List[dict]:
        stats = [
            {"stage": s, "rows_in": self.rows_in[s], "rows_out": self.rows_out[s]}
            for s in STAGES
        ]
        if aggregates is not None:
            stats.append(
                {"stage": "aggregate", "rows_in": self.rows_out["filter"], "rows_out": len(aggregates)}
            )
        return stats


@dataclass
class PipelineResult:
    """Output table plus the audit trail of one run."""

    aggregates: pd.DataFrame
    stage_stats: pd.DataFrame
    rejections: Dict[str, int]
    filtered: pd.DataFrame
    unmatched_regions: int = 0
    contract_results: List[Tuple[str, DataContractResult]] = field(default_factory=list)
    missing_profile: Optional[pd.DataFrame] = None
    quality_counts: Dict[str, Dict[str, int]] = field(default_factory=dict)


# =============================================================================
# 4. TRANSFORMATION
# =============================================================================

def transform_chunk(
    raw: pd.DataFrame,
    lookup: RegionLookup,
    config: FilterConfig,
    counter: StageCounter,
    seen_ids: Optional[Set] = None,
) -> pd.DataFrame:
    """Run deduplicate -> normalize -> join -> filter over one block of raw rows."""
    df = standardize_columns(raw)
    validate_data_contracts(df, required_columns=RAW_REQUIRED_COLUMNS)
    counter.record("extract", len(raw), len(df))

    n_in = len(df)
    df = deduplicate(df, seen_ids)
    counter.record("deduplicate", n_in, len(df))

    n_in = len(df)
    df = normalize_listings(df)
    counter.record("normalize", n_in, len(df))

    n_in = len(df)
    df = join_regions(df, lookup)
    counter.record("join_regions", n_in, len(df))
    counter.unmatched_regions += int(df["region"].isna().sum())

    n_in = len(df)
    df, rejections = apply_filters(df, config)
    counter.record("filter", n_in, len(df))
    counter.add_rejections(rejections)

    return df


def _finish(
    filtered_chunks: Iterable[pd.DataFrame],
    counter: StageCounter,
) -> PipelineResult:
    chunks = list(filtered_chunks)
    if chunks:
        filtered = pd.concat(chunks, ignore_index=True)
    else:
        filtered = pd.DataFrame(columns=AGGREGATION_INPUT_COLUMNS + ["listing_id"])

    aggregates = aggregate_prices(filtered)
    stage_stats = pd.DataFrame(counter.stage_stats(aggregates))
    return PipelineResult(
        aggregates=aggregates,
        stage_stats=stage_stats,
        rejections=dict(counter.rejections),
        filtered=filtered,
        unmatched_regions=counter.unmatched_regions,
    )


def run_pipeline(
    listings: pd.DataFrame,
    lookup: RegionLookup,
    config: Optional[FilterConfig] = None,
) -> PipelineResult:
    """Run every stage in memory over an already loaded listings table."""
    config = config or FilterConfig()
    counter = StageCounter()
    filtered = transform_chunk(listings, lookup, config, counter)
    return _finish([filtered], counter)


def run_pipeline_chunked(
    chunks: Iterable[pd.DataFrame],
    lookup: RegionLookup,
    config: Optional[FilterConfig] = None,
) -> PipelineResult:
    """
    Streaming variant of run_pipeline.

    Only the seen-id set and the surviving rows' grouping columns are kept
    between chunks; the median still needs every value of a group.
    """
    config = config or FilterConfig()
    counter = StageCounter()
    seen_ids: Set = set()

    def _survivors() -> Iterator[pd.DataFrame]:
        for i, chunk in enumerate(chunks, start=1):
            logger.info(f"Processing chunk {i:,} ({len(chunk):,} rows)")
            filtered = transform_chunk(chunk, lookup, config, counter, seen_ids)
            yield filtered.loc[:, AGGREGATION_INPUT_COLUMNS + ["listing_id"]]

    return _finish(_survivors(), counter)


# =============================================================================
# 5. LOADING
# =============================================================================

def write_aggregates(df: pd.DataFrame, path: Path) -> Path:
    """Write the aggregate table as CSV."""
    path.parent.mkdir(parents=True, exist_ok=True)
    df.loc[:, OUTPUT_COLUMNS].to_csv(path, index=False)
    logger.info(f"Wrote {len(df):,} aggregate rows to {path}")
    return path


# =============================================================================
# 6. REPORTING
# =============================================================================

def _frame_block(df: pd.DataFrame, empty_message: str) -> List[str]:
    if df is None or df.empty:
        return [f"_{empty_message}_"]
    return ["```text", df.to_string(index=False), "```"]


def _write_etl_report(
    run_started_at: datetime,
    input_path: Path,
    regions_path: Path,
    config: FilterConfig,
    stage_stats: pd.DataFrame,
    rejections: Dict[str, int],
    missing_profile: Optional[pd.DataFrame],
    quality_counts: Dict[str, Dict[str, int]],
    offer_summary: Optional[pd.DataFrame],
    contract_results: List[Tuple[str, DataContractResult]],
    report_dir: Path = REPORTS_DATA_DIR,
) -> Tuple[Path, Path]:
    """
    Write ETL run artifacts:
    - reports/data/etl_run_YYYYMMDD.md
    - reports/data/etl_run_YYYYMMDD.csv
    """
    report_dir.mkdir(parents=True, exist_ok=True)

    run_stamp = run_started_at.strftime("%Y%m%d")
    markdown_path = report_dir / f"etl_run_{run_stamp}.md"
    csv_path = report_dir / f"etl_run_{run_stamp}.csv"

    stage_stats.to_csv(csv_path, index=False)

    contract_lines = []
    for label, result in contract_results:
        contract_lines.append(f"- **{label}**: {'PASS' if result.passed else 'FAIL'}")
        for violation in result.violations:
            contract_lines.append(
                f"  - [{violation.check}] {violation.message} (failed_rows={violation.failed_rows})"
            )

    rejection_df = pd.DataFrame(
        [{"predicate": name, "rejected": count} for name, count in rejections.items()]
    )

    ranges = ", ".join(
        f"{offer} {low:,.0f}-{high:,.0f}" for offer, (low, high) in config.price_per_area_ranges.items()
    )

    md = [
        f"# ETL Run Report - {run_stamp}",
        "",
        "## Run Metadata",
        f"- Started (UTC): {run_started_at.isoformat()}",
        f"- Listings: `{input_path}`",
        f"- Regions: `{regions_path}`",
        f"- Living area: {config.living_area_range[0]:g}-{config.living_area_range[1]:g} m2",
        f"- Price per m2: {ranges}",
        "",
        "## Stage Summary",
        *_frame_block(stage_stats, "No stage stats captured."),
        "",
        "## Filter Rejections",
        *_frame_block(rejection_df, "No filter results captured."),
        "",
        "## Missing Values",
        *_frame_block(missing_profile, "No profile captured."),
        "",
    ]

    for title, counts in quality_counts.items():
        md.append(f"### {title}")
        md.extend(f"- {label}: {count:,}" for label, count in counts.items())
        md.append("")

    md.extend(["## Price per m2 by Offer Type", *_frame_block(offer_summary, "No listings survived filtering."), ""])

    md.append("## Data Contract Results")
    if contract_lines:
        md.extend(contract_lines)
    else:
        md.append("_No contract results captured._")

    markdown_path.write_text("\n".join(md), encoding="utf-8")
    return markdown_path, csv_path


def _profile(listings: pd.DataFrame, config: FilterConfig) -> Tuple[pd.DataFrame, Dict[str, Dict[str, int]]]:
    listings = standardize_columns(listings)
    quality_counts = {
        "Living Area": categorize_living_area(listings, config),
        "Total Price": categorize_price(listings),
        "GPS Coordinates": categorize_coordinates(listings, config),
    }
    return profile_missing_values(listings), quality_counts


def _profiled_chunks(
    chunks: Iterable[pd.DataFrame],
    config: FilterConfig,
    profiles: List[Tuple[pd.DataFrame, Dict[str, Dict[str, int]]]],
) -> Iterator[pd.DataFrame]:
    """Pass chunks through unchanged, profiling each on the way."""
    for chunk in chunks:
        profiles.append(_profile(chunk, config))
        yield chunk


def _combine_profiles(
    profiles: List[Tuple[pd.DataFrame, Dict[str, Dict[str, int]]]],
) -> Tuple[pd.DataFrame, Dict[str, Dict[str, int]]]:
    missing_profile = combine_missing_profiles(p for p, _ in profiles)
    titles = list(profiles[0][1]) if profiles else []
    quality_counts = {title: combine_counts(counts[title] for _, counts in profiles) for title in titles}
    return missing_profile, quality_counts


# =============================================================================
# MAIN PIPELINE
# =============================================================================

def run_etl(
    input_path: Path = LISTINGS_PATH,
    regions_path: Path = REGIONS_PATH,
    output_path: Optional[Path] = OUTPUT_PATH,
    config: Optional[FilterConfig] = None,
    limit: Optional[int] = None,
    chunksize: Optional[int] = None,
    write_report: bool = False,
    report_dir: Path = REPORTS_DATA_DIR,
    load_db: bool = False,
    replace_existing: bool = False,
) -> PipelineResult:
    """Execute the full ETL pipeline."""
    logger.info("=" * 60)
    logger.info("Regional Listing Prices ETL Pipeline")
    logger.info("=" * 60)

    run_started_at = datetime.utcnow()
    config = config or FilterConfig()
    stage_stats = pd.DataFrame()
    rejections: Dict[str, int] = {}
    missing_profile: Optional[pd.DataFrame] = None
    quality_counts: Dict[str, Dict[str, int]] = {}
    offer_summary: Optional[pd.DataFrame] = None
    contract_results: List[Tuple[str, DataContractResult]] = []

    try:
        # 1. Reference data
        reference = load_region_reference(regions_path)
        lookup = RegionLookup.from_frame(reference)

        # 2. Extract + transform
        if chunksize:
            header = standardize_columns(pd.read_csv(input_path, nrows=0, **_read_csv_kwargs()))
            raw_contract = validate_data_contracts(header, required_columns=RAW_REQUIRED_COLUMNS)
            contract_results.append(("raw-listings", raw_contract))
            chunks = iter_raw_listings(input_path, chunksize, limit)
            profiles: List[Tuple[pd.DataFrame, Dict[str, Dict[str, int]]]] = []
            if write_report:
                chunks = _profiled_chunks(chunks, config, profiles)
            result = run_pipeline_chunked(chunks, lookup, config)
            if write_report:
                missing_profile, quality_counts = _combine_profiles(profiles)
        else:
            listings = load_raw_listings(input_path, limit)
            raw_contract = validate_data_contracts(
                standardize_columns(listings), required_columns=RAW_REQUIRED_COLUMNS
            )
            contract_results.append(("raw-listings", raw_contract))
            if write_report:
                missing_profile, quality_counts = _profile(listings, config)
            result = run_pipeline(listings, lookup, config)
        logger.info("Data contracts (raw-listings): PASS")

        stage_stats = result.stage_stats
        rejections = result.rejections
        offer_summary = summarize_offer_types(result.filtered)

        # 3. Output contract
        aggregate_contract = validate_aggregates(result.aggregates, config)
        contract_results.append(("aggregates", aggregate_contract))
        logger.info("Data contracts (aggregates): PASS")
        result.contract_results = contract_results
        result.missing_profile = missing_profile
        result.quality_counts = quality_counts

        # 4. Load
        if output_path is not None:
            write_aggregates(result.aggregates, output_path)
        if load_db:
            from listing_prices.database import create_tables, load_to_database

            create_tables()
            load_to_database(result.aggregates, replace_existing=replace_existing)

        # Summary
        logger.info("=" * 60)
        logger.info("ETL Pipeline Completed Successfully")
        logger.info("=" * 60)
        for row in stage_stats.to_dict(orient="records"):
            logger.info(f"  {row['stage']}: {row['rows_in']:,} -> {row['rows_out']:,}")
        logger.info(f"Listings without region: {result.unmatched_regions:,}")

        if write_report:
            markdown_path, csv_path = _write_etl_report(
                run_started_at=run_started_at,
                input_path=input_path,
                regions_path=regions_path,
                config=config,
                stage_stats=stage_stats,
                rejections=rejections,
                missing_profile=missing_profile,
                quality_counts=quality_counts,
                offer_summary=offer_summary,
                contract_results=contract_results,
                report_dir=report_dir,
            )
            logger.info(f"Wrote ETL report: {markdown_path}")
            logger.info(f"Wrote ETL CSV summary: {csv_path}")

        return result

    except Exception as e:
        logger.error(f"ETL Failed: {e}")
        if write_report and not stage_stats.empty:
            try:
                markdown_path, csv_path = _write_etl_report(
                    run_started_at=run_started_at,
                    input_path=input_path,
                    regions_path=regions_path,
                    config=config,
                    stage_stats=stage_stats,
                    rejections=rejections,
                    missing_profile=missing_profile,
                    quality_counts=quality_counts,
                    offer_summary=offer_summary,
                    contract_results=contract_results,
                    report_dir=report_dir,
                )
                logger.info(f"Partial ETL report written: {markdown_path}")
                logger.info(f"Partial ETL CSV written: {csv_path}")
            except Exception as report_error:
                logger.error(f"Failed to write partial ETL report: {report_error}")
        raise


def build_filter_config(args: argparse.Namespace) -> FilterConfig:
    config = FilterConfig(living_area_range=tuple(args.living_area))
    if args.rent_range:
        config = config.with_price_range("rent", tuple(args.rent_range))
    if args.sale_range:
        config = config.with_price_range("sale", tuple(args.sale_range))
    return config


if __name__ == "__main__":
    defaults = FilterConfig()

    parser = argparse.ArgumentParser(description="Run the regional listing prices ETL pipeline")
    parser.add_argument(
        "--input",
        type=Path,
        default=LISTINGS_PATH,
        help=f"Listings CSV path (default: {LISTINGS_PATH})",
    )
    parser.add_argument(
        "--regions",
        type=Path,
        default=REGIONS_PATH,
        help=f"District/region reference CSV path (default: {REGIONS_PATH})",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=OUTPUT_PATH,
        help=f"Aggregate CSV path (default: {OUTPUT_PATH})",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Optional deterministic row limit (applied before transformation)",
    )
    parser.add_argument(
        "--chunksize",
        type=int,
        default=None,
        help="Stream the listings CSV in chunks of this many rows",
    )
    parser.add_argument(
        "--living-area",
        type=float,
        nargs=2,
        metavar=("MIN", "MAX"),
        default=list(defaults.living_area_range),
        help="Inclusive living area bounds in m2",
    )
    parser.add_argument(
        "--rent-range",
        type=float,
        nargs=2,
        metavar=("MIN", "MAX"),
        default=None,
        help="Inclusive price per m2 bounds for rent listings",
    )
    parser.add_argument(
        "--sale-range",
        type=float,
        nargs=2,
        metavar=("MIN", "MAX"),
        default=None,
        help="Inclusive price per m2 bounds for sale listings",
    )
    parser.add_argument(
        "--write-report",
        action="store_true",
        help="Write reports/data/etl_run_YYYYMMDD.md and CSV stage summary",
    )
    parser.add_argument(
        "--load-db",
        action="store_true",
        help="Load the aggregates into the region_price_stats table",
    )
    parser.add_argument(
        "--replace-existing",
        action="store_true",
        help="Clear region_price_stats before load to make full refreshes idempotent",
    )
    args = parser.parse_args()

    run_etl(
        input_path=args.input,
        regions_path=args.regions,
        output_path=args.output,
        config=build_filter_config(args),
        limit=args.limit,
        chunksize=args.chunksize,
        write_report=args.write_report,
        load_db=args.load_db,
        replace_existing=args.replace_existing,
    )

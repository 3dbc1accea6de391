"""
Regional Listing Prices - Database Models

SQLAlchemy model for the aggregated price-per-m2 table.

Usage:
    from listing_prices.database import create_tables, load_to_database
    create_tables()
    load_to_database(aggregates_df, replace_existing=True)
"""

import logging
from datetime import datetime
from pathlib import Path

import pandas as pd
from sqlalchemy import (
    create_engine,
    Column,
    Integer,
    Float,
    String,
    DateTime,
    Index,
)
from sqlalchemy.orm import declarative_base, sessionmaker

from config.settings import DATABASE_URL

logger = logging.getLogger(__name__)

# =============================================================================
# Database Configuration
# =============================================================================

engine = create_engine(DATABASE_URL, echo=False, future=True)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


# =============================================================================
# Region Price Stats Table
# =============================================================================

class RegionPriceStat(Base):
    """
    Mean / median price per m2 for one (year, region, offer, property) group.

    region is NULL for listings whose district did not resolve to a region.
    """
    __tablename__ = "region_price_stats"

    id = Column(Integer, primary_key=True, autoincrement=True)

    year = Column(Integer, nullable=False, index=True)
    region = Column(String(100), index=True)
    offer_type = Column(String(20), nullable=False)  # sale / rent
    property_type = Column(String(20), nullable=False)  # apartment / house

    mean_price_per_area = Column(Float, nullable=False)
    median_price_per_area = Column(Float, nullable=False)
    row_count = Column(Integer, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_region_price_stats_group", "year", "region", "offer_type", "property_type"),
    )

    def __repr__(self):
        return (
            f"<RegionPriceStat(year={self.year}, region={self.region}, "
            f"{self.offer_type}/{self.property_type}, median={self.median_price_per_area:,.0f})>"
        )


# =============================================================================
# Helper Functions
# =============================================================================

def _ensure_sqlite_dir(bind) -> None:
    url = bind.url
    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)


def create_tables(bind=None):
    """Create all tables in the database."""
    bind = bind or engine
    _ensure_sqlite_dir(bind)
    Base.metadata.create_all(bind=bind)
    logger.info("Database tables created")


def get_session(bind=None):
    """Get a new database session."""
    if bind is None:
        return SessionLocal()
    return sessionmaker(autocommit=False, autoflush=False, bind=bind)()


def load_to_database(
    df: pd.DataFrame,
    *,
    bind=None,
    replace_existing: bool = False,
    batch_size: int = 5000,
) -> int:
    """Insert aggregate rows into region_price_stats. Returns the row count."""
    logger.info("Loading aggregates to database...")

    valid_columns = {c.key for c in RegionPriceStat.__table__.columns}
    records = df.to_dict(orient="records")
    session = get_session(bind)

    try:
        if replace_existing:
            logger.info("replace_existing=True: clearing 'region_price_stats' before load")
            session.query(RegionPriceStat).delete()
            session.commit()

        count = 0
        for i in range(0, len(records), batch_size):
            batch = records[i:i + batch_size]
            objects = [
                RegionPriceStat(
                    **{k: (v if pd.notna(v) else None) for k, v in row.items() if k in valid_columns}
                )
                for row in batch
            ]
            session.bulk_save_objects(objects)
            count += len(batch)

        session.commit()
        logger.info(f"Loaded {count:,} rows into 'region_price_stats'")
        return count

    except Exception as e:
        session.rollback()
        logger.error(f"Error loading data: {e}")
        raise
    finally:
        session.close()


if __name__ == "__main__":
    import argparse

    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")

    parser = argparse.ArgumentParser(description="Database management")
    parser.add_argument("command", choices=["create", "drop"])
    args = parser.parse_args()

    if args.command == "create":
        create_tables()
    elif args.command == "drop":
        confirm = input("Are you sure you want to drop all tables? (yes/no): ")
        if confirm.lower() == "yes":
            Base.metadata.drop_all(bind=engine)
            logger.info("All tables dropped")
        else:
            print("Cancelled")

"""
Create all tables and optionally seed the countries list.

Usage:
    python scripts/init_db.py [--countries-csv data/countries.csv]

The countries file needs "code" and "name" columns.
"""

import argparse
import asyncio
import logging
import sys
import os

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

import pandas as pd
from core.config import settings
from core.database import build_engine, build_session_factory
from core.logging import setup_logging
from models.base import Base
from models.reference_data import Country
# Import all models to ensure they are registered
import models  # noqa: F401
from sync.providers.base import upsert_rows

logger = logging.getLogger(__name__)


def read_countries(path: str):
    df = pd.read_csv(path, dtype=str)
    df.columns = df.columns.str.strip().str.lower()
    df = df.dropna(subset=["code", "name"])
    df["code"] = df["code"].str.strip().str.upper()
    df["name"] = df["name"].str.strip()
    return df.drop_duplicates(subset=["code"])[["code", "name"]].to_dict(orient="records")


async def init_database(countries_csv: str = None):
    logger.info("Connecting to database...")
    engine = build_engine(settings.DATABASE_URL)

    async with engine.begin() as conn:
        logger.info("Creating tables...")
        await conn.run_sync(Base.metadata.create_all)
        logger.info("Tables created successfully.")

    if countries_csv:
        countries = read_countries(countries_csv)
        session_factory = build_session_factory(engine)
        async with session_factory() as session:
            await upsert_rows(session, Country, countries, index_elements=["code"], preserve=())
            await session.commit()
        logger.info(f"Seeded {len(countries)} countries from {countries_csv}")

    await engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create database tables")
    parser.add_argument("--countries-csv", help="CSV with code,name columns to seed the countries table")
    args = parser.parse_args()

    setup_logging()
    asyncio.run(init_database(args.countries_csv))

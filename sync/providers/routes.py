"""
Airline routes from an OpenFlights-format routes file.

Accepts either a headered CSV or the raw headerless routes.dat layout.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional
import logging

import pandas as pd

from core.config import settings
from core.exceptions import ConfigurationError, ResponseFormatError
from models.base import SyncType
from models.reference_data import Route
from schemas.normalized import RouteCreate
from sync.providers.base import ContentProvider, FetchChunkResult, upsert_rows
from sync.signature import ContentSignature

logger = logging.getLogger(__name__)

OPENFLIGHTS_COLUMNS = [
    "airline",
    "airline_id",
    "source_airport",
    "source_airport_id",
    "destination_airport",
    "destination_airport_id",
    "codeshare",
    "stops",
    "equipment",
]

KEY_COLUMNS = ["airline", "source_airport", "destination_airport"]


def _route_key(airline: str, source: str, destination: str) -> str:
    return f"{airline}:{source}-{destination}"


class RouteProvider(ContentProvider):
    """
    Routes keyed by airline, source and destination airport.

    Options:
        csv_path: Overrides ROUTES_CSV_PATH
    """

    sync_type = SyncType.ROUTES
    model = Route
    content_signature = ContentSignature(fields=("codeshare", "stops", "equipment"), url_fields=())

    def __init__(self, session_factory, options=None):
        super().__init__(session_factory, options)
        path = self.options.get("csv_path") or settings.ROUTES_CSV_PATH
        if not path:
            raise ConfigurationError(
                "No routes file configured",
                context={"provider": self.name, "missing": "ROUTES_CSV_PATH"}
            )
        self.file_path = Path(path)
        self._records: Optional[List[Dict[str, Any]]] = None

    def _read(self) -> pd.DataFrame:
        if not self.file_path.exists():
            raise ConfigurationError(
                f"Routes file not found: {self.file_path}",
                context={"provider": self.name, "file_path": str(self.file_path)}
            )

        logger.info(f"Reading routes from {self.file_path}")
        df = pd.read_csv(self.file_path, na_values=["\\N"], keep_default_na=True, dtype=str)

        # Normalize column names (strip whitespace, lowercase)
        df.columns = df.columns.str.strip().str.lower().str.replace(" ", "_")
        if not set(KEY_COLUMNS).issubset(df.columns):
            if len(df.columns) != len(OPENFLIGHTS_COLUMNS):
                raise ResponseFormatError(
                    f"Unrecognized routes file layout: {list(df.columns)}",
                    context={"provider": self.name, "file_path": str(self.file_path)}
                )
            df = pd.read_csv(
                self.file_path,
                header=None,
                names=OPENFLIGHTS_COLUMNS,
                na_values=["\\N"],
                dtype=str
            )
        return df

    def _load(self) -> List[Dict[str, Any]]:
        if self._records is None:
            df = self._read()
            df = df.dropna(subset=KEY_COLUMNS)
            for column in KEY_COLUMNS:
                df[column] = df[column].str.strip().str.upper()
            df = df.drop_duplicates(subset=KEY_COLUMNS, keep="first")
            df = df.astype(object).where(pd.notna(df), None)
            self._records = df.to_dict(orient="records")
            logger.info(f"Read {len(self._records)} unique routes")
        return self._records

    async def count_total(self) -> Optional[int]:
        return len(self._load())

    async def fetch_candidates(self, offset, batch_size, resume_token=None) -> FetchChunkResult:
        records = self._load()
        return FetchChunkResult(items=records[offset:offset + batch_size], total=len(records))

    def item_id(self, raw: Dict[str, Any]) -> str:
        return _route_key(raw["airline"], raw["source_airport"], raw["destination_airport"])

    async def fetch_proposed_content(self, raw: Dict[str, Any]) -> RouteCreate:
        stops = raw.get("stops")
        return RouteCreate(
            airline_iata=raw["airline"],
            source_airport=raw["source_airport"],
            destination_airport=raw["destination_airport"],
            codeshare=str(raw.get("codeshare") or "").strip().upper() == "Y",
            stops=int(float(stops)) if stops not in (None, "") else 0,
            equipment=(raw.get("equipment") or None)
        )

    async def get_existing(self, item_id: str) -> Optional[Route]:
        airline, _, pair = item_id.partition(":")
        source, _, destination = pair.partition("-")
        return await self._get_one(
            Route.airline_iata == airline,
            Route.source_airport == source,
            Route.destination_airport == destination
        )

    async def upsert(self, proposed: RouteCreate):
        async with self.session_factory() as session:
            await upsert_rows(
                session,
                Route,
                [proposed.model_dump()],
                index_elements=["airline_iata", "source_airport", "destination_airport"]
            )
            await session.commit()

"""
Airline and airport reference data from the Cirium FlightStats API.

Both feeds return the complete active list in one response, so the list is
fetched once per provider instance and sliced by offset afterwards.
"""

from typing import Any, Dict, List, Optional
import logging
import uuid

import httpx

from core.config import settings
from core.exceptions import ConfigurationError, ResponseFormatError
from models.base import SyncType
from models.policies import PetPolicy
from models.reference_data import Airline, Airport
from schemas.normalized import AirlineCreate, AirportCreate
from sync.providers.base import ContentProvider, FetchChunkResult, upsert_rows
from sync.providers.http import request_json
from sync.signature import ContentSignature

logger = logging.getLogger(__name__)


class CiriumClient:
    """
    Minimal FlightStats REST client with retry and error classification.

    401/403 raise AuthenticationError, 429 RateLimitError, 5xx and
    transport failures NetworkError; retryable ones go through retry_async.
    """

    def __init__(
        self,
        app_id: Optional[str] = None,
        app_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.app_id = app_id if app_id is not None else settings.CIRIUM_APP_ID
        self.app_key = app_key if app_key is not None else settings.CIRIUM_APP_KEY
        self.base_url = (base_url or settings.CIRIUM_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.REQUEST_TIMEOUT
        self._client = client
        self._owns_client = client is None

    async def get_json(self, path: str, max_attempts: Optional[int] = None) -> Dict[str, Any]:
        if not self.app_id or not self.app_key:
            raise ConfigurationError(
                "Cirium credentials are not configured",
                context={"provider": "cirium", "missing": "CIRIUM_APP_ID/CIRIUM_APP_KEY"}
            )

        url = f"{self.base_url}/{path.lstrip('/')}"
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)

        return await request_json(
            self._client,
            "GET",
            url,
            "cirium",
            max_attempts=max_attempts,
            headers={"appId": self.app_id, "appKey": self.app_key},
            timeout=self.timeout
        )

    async def close(self):
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


class _CiriumListProvider(ContentProvider):
    """Shared paging over a full list fetched once"""

    path: str = ""
    list_key: str = ""

    def __init__(self, session_factory, options=None, client: Optional[CiriumClient] = None):
        super().__init__(session_factory, options)
        self.client = client or CiriumClient()
        self._records: Optional[List[Dict[str, Any]]] = None

    def request_path(self) -> str:
        return self.path

    async def _load(self, max_attempts: Optional[int] = None) -> List[Dict[str, Any]]:
        if self._records is None:
            payload = await self.client.get_json(self.request_path(), max_attempts=max_attempts)
            records = payload.get(self.list_key) if isinstance(payload, dict) else None
            if not isinstance(records, list):
                raise ResponseFormatError(
                    f"Cirium response has no '{self.list_key}' list",
                    context={"provider": self.name, "path": self.request_path()}
                )
            self._records = [r for r in records if isinstance(r, dict) and r.get("iata")]
            logger.info(f"{self.name}: loaded {len(self._records)} records from Cirium")
        return self._records

    async def count_total(self) -> Optional[int]:
        return len(await self._load())

    async def fetch_candidates(self, offset, batch_size, resume_token=None) -> FetchChunkResult:
        # retried as a whole by the chunk processor
        records = await self._load(max_attempts=1)
        return FetchChunkResult(items=records[offset:offset + batch_size], total=len(records))

    def item_id(self, raw: Dict[str, Any]) -> str:
        return str(raw["iata"]).strip().upper()

    async def close(self):
        await self.client.close()


class AirlineProvider(_CiriumListProvider):
    """
    Active airlines keyed by IATA code.

    Options:
        iata_code: Sync a single airline instead of the full active list
    """

    sync_type = SyncType.AIRLINES
    model = Airline
    dependent_models = (PetPolicy,)
    path = "/airlines/rest/v1/json/active"
    list_key = "airlines"
    content_signature = ContentSignature(fields=("name", "icao_code", "country", "active"), url_fields=())

    def request_path(self) -> str:
        iata_code = self.options.get("iata_code")
        if iata_code:
            return f"/airlines/rest/v1/json/iata/{str(iata_code).strip().upper()}"
        return self.path

    async def fetch_proposed_content(self, raw: Dict[str, Any]) -> AirlineCreate:
        return AirlineCreate(
            iata_code=raw["iata"],
            icao_code=raw.get("icao"),
            name=raw.get("name") or "",
            country=raw.get("countryCode"),
            active=bool(raw.get("active", True))
        )

    async def get_existing(self, item_id: str) -> Optional[Airline]:
        return await self._get_one(Airline.iata_code == item_id)

    async def upsert(self, proposed: AirlineCreate):
        row = proposed.model_dump()
        row["id"] = str(uuid.uuid4())
        async with self.session_factory() as session:
            await upsert_rows(session, Airline, [row], index_elements=["iata_code"], preserve=("created_at", "id"))
            await session.commit()


class AirportProvider(_CiriumListProvider):
    """Active airports keyed by IATA code"""

    sync_type = SyncType.AIRPORTS
    model = Airport
    path = "/airports/rest/v1/json/active"
    list_key = "airports"
    content_signature = ContentSignature(
        fields=("name", "city", "country", "latitude", "longitude", "timezone"),
        url_fields=()
    )

    async def fetch_proposed_content(self, raw: Dict[str, Any]) -> AirportCreate:
        return AirportCreate(
            iata_code=raw["iata"],
            name=raw.get("name") or "",
            city=raw.get("city"),
            country=raw.get("countryName"),
            latitude=raw.get("latitude"),
            longitude=raw.get("longitude"),
            timezone=raw.get("timeZoneRegionName")
        )

    async def get_existing(self, item_id: str) -> Optional[Airport]:
        return await self._get_one(Airport.iata_code == item_id)

    async def upsert(self, proposed: AirportCreate):
        async with self.session_factory() as session:
            await upsert_rows(session, Airport, [proposed.model_dump()], index_elements=["iata_code"])
            await session.commit()

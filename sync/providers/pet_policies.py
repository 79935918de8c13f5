"""
Airline pet policies extracted from official airline sources.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
import logging

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError

from core.config import settings
from models.base import SyncType
from models.policies import PetPolicy
from models.reference_data import Airline
from schemas.normalized import PetPolicyCreate
from sync.providers.base import ContentProvider, FetchChunkResult, upsert_rows
from sync.providers.policy_analyzer import PolicyAnalyzer
from sync.signature import PET_POLICY_SIGNATURE

logger = logging.getLogger(__name__)

DEFAULT_MAX_POLICY_AGE_DAYS = 30


async def airlines_needing_update(session_factory, max_age_days: int = DEFAULT_MAX_POLICY_AGE_DAYS) -> List[str]:
    """
    Ids of active airlines whose pet policy is missing or stale.

    Stale means last_policy_update is unset or older than max_age_days.
    """
    cutoff = datetime.utcnow() - timedelta(days=max_age_days)
    async with session_factory() as session:
        result = await session.execute(
            select(Airline.id)
            .outerjoin(PetPolicy, PetPolicy.airline_id == Airline.id)
            .where(
                Airline.active.is_(True),
                or_(
                    PetPolicy.id.is_(None),
                    Airline.last_policy_update.is_(None),
                    Airline.last_policy_update < cutoff
                )
            )
            .order_by(Airline.name, Airline.id)
        )
        airline_ids = [row.id for row in result]
    logger.info(f"Found {len(airline_ids)} airlines needing a pet policy update")
    return airline_ids


class PetPolicyProvider(ContentProvider):
    """
    One work item per active airline, ordered by name.

    Options:
        airline_ids: Only analyze these airlines
        smart_update: Resolve airline_ids to the airlines without a policy
            or whose policy is older than max_age_days (default 30)
    """

    sync_type = SyncType.PET_POLICIES
    model = PetPolicy
    content_signature = PET_POLICY_SIGNATURE

    def __init__(self, session_factory, options=None, analyzer: Optional[PolicyAnalyzer] = None):
        super().__init__(session_factory, options)
        self.analyzer = analyzer or PolicyAnalyzer()
        self.cooldown_seconds = settings.SYNC_POLICY_COOLDOWN_SECONDS

    def _airline_filter(self):
        criteria = [Airline.active.is_(True)]
        airline_ids = self.options.get("airline_ids")
        if airline_ids is not None:
            criteria.append(Airline.id.in_([str(i) for i in airline_ids]))
        return criteria

    async def count_total(self) -> Optional[int]:
        try:
            if self.options.get("smart_update") and self.options.get("airline_ids") is None:
                self.options["airline_ids"] = await airlines_needing_update(
                    self.session_factory,
                    max_age_days=int(self.options.get("max_age_days", DEFAULT_MAX_POLICY_AGE_DAYS))
                )

            async with self.session_factory() as session:
                result = await session.execute(
                    select(func.count()).select_from(Airline).where(*self._airline_filter())
                )
                return result.scalar_one()
        except SQLAlchemyError as e:
            raise self._persistence_error("count_total", e)

    async def fetch_candidates(self, offset, batch_size, resume_token=None) -> FetchChunkResult:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Airline.id, Airline.name, Airline.iata_code)
                .where(*self._airline_filter())
                .order_by(Airline.name, Airline.id)
                .offset(offset)
                .limit(batch_size)
            )
            items = [{"id": row.id, "name": row.name, "iata_code": row.iata_code} for row in result]
        return FetchChunkResult(items=items)

    def item_id(self, raw: Dict[str, Any]) -> str:
        return raw["id"]

    async def fetch_proposed_content(self, raw: Dict[str, Any]) -> PetPolicyCreate:
        analysis = await self.analyzer.analyze_pet_policy(raw["name"], raw.get("iata_code") or "")
        return PetPolicyCreate(airline_id=raw["id"], **analysis)

    async def get_existing(self, item_id: str) -> Optional[PetPolicy]:
        return await self._get_one(PetPolicy.airline_id == item_id)

    async def upsert(self, proposed: PetPolicyCreate):
        now = datetime.utcnow()
        airline_values: Dict[str, Any] = {"last_policy_update": now}
        if proposed.official_website:
            airline_values["website"] = proposed.official_website

        async with self.session_factory() as session:
            await upsert_rows(session, PetPolicy, [proposed.model_dump()], index_elements=["airline_id"])
            await session.execute(
                update(Airline).where(Airline.id == proposed.airline_id).values(**airline_values)
            )
            await session.commit()

    async def close(self):
        await self.analyzer.close()

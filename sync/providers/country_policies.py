"""
Country pet import (arrival) and transit policies.
"""

from typing import Any, Dict, List, Optional
import logging

from pydantic import BaseModel, Field
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from core.config import settings
from core.exceptions import ConfigurationError
from models.base import CountryPolicyType, SyncType
from models.policies import CountryPolicy
from models.reference_data import Country
from schemas.normalized import CountryPolicyCreate
from sync.providers.base import ContentProvider, FetchChunkResult, upsert_rows
from sync.providers.policy_analyzer import PolicyAnalyzer
from sync.signature import COUNTRY_POLICY_SIGNATURE

logger = logging.getLogger(__name__)


class CountryPolicyBundle(BaseModel):
    """Arrival and transit policy of one country"""
    country_code: str
    policies: List[CountryPolicyCreate] = Field(default_factory=list)


class CountryPolicyProvider(ContentProvider):
    """
    One work item per country, ordered by name.

    Options:
        country_name: Analyze a single country (must exist in countries)
    """

    sync_type = SyncType.COUNTRY_POLICIES
    model = CountryPolicy
    content_signature = COUNTRY_POLICY_SIGNATURE

    def __init__(self, session_factory, options=None, analyzer: Optional[PolicyAnalyzer] = None):
        super().__init__(session_factory, options)
        self.analyzer = analyzer or PolicyAnalyzer()
        self.cooldown_seconds = settings.SYNC_POLICY_COOLDOWN_SECONDS

    def _country_filter(self):
        country_name = self.options.get("country_name")
        if country_name:
            return [func.lower(Country.name) == str(country_name).strip().lower()]
        return []

    async def count_total(self) -> Optional[int]:
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(func.count()).select_from(Country).where(*self._country_filter())
                )
                total = result.scalar_one()
        except SQLAlchemyError as e:
            raise self._persistence_error("count_total", e)

        if self.options.get("country_name") and total == 0:
            raise ConfigurationError(
                f"Unknown country: {self.options['country_name']}",
                context={"provider": self.name, "country_name": self.options["country_name"]}
            )
        return total

    async def fetch_candidates(self, offset, batch_size, resume_token=None) -> FetchChunkResult:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Country.code, Country.name)
                .where(*self._country_filter())
                .order_by(Country.name)
                .offset(offset)
                .limit(batch_size)
            )
            items = [{"code": row.code, "name": row.name} for row in result]
        return FetchChunkResult(items=items)

    def item_id(self, raw: Dict[str, Any]) -> str:
        return raw["code"]

    async def fetch_proposed_content(self, raw: Dict[str, Any]) -> CountryPolicyBundle:
        analyzed = await self.analyzer.analyze_country_policies(raw["name"])
        policies = {}
        for entry in analyzed:
            policy = CountryPolicyCreate(**{**entry, "country_code": raw["code"]})
            # First answer per type wins
            policies.setdefault(policy.policy_type, policy)
        return CountryPolicyBundle(country_code=raw["code"], policies=list(policies.values()))

    async def get_existing(self, item_id: str) -> Optional[List[CountryPolicy]]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(CountryPolicy).where(CountryPolicy.country_code == item_id)
            )
            rows = list(result.scalars().all())
        return rows or None

    def has_changed(self, existing: Optional[List[CountryPolicy]], proposed: CountryPolicyBundle) -> bool:
        if not existing:
            return bool(proposed.policies)

        stored = {CountryPolicyType(row.policy_type).value: row for row in existing}
        if set(stored) != {CountryPolicyType(p.policy_type).value for p in proposed.policies}:
            return True
        return any(
            self.content_signature.changed(stored[CountryPolicyType(p.policy_type).value], p)
            for p in proposed.policies
        )

    async def upsert(self, proposed: CountryPolicyBundle):
        rows = []
        for policy in proposed.policies:
            row = policy.model_dump()
            row["policy_type"] = CountryPolicyType(row["policy_type"])
            rows.append(row)

        async with self.session_factory() as session:
            await upsert_rows(session, CountryPolicy, rows, index_elements=["country_code", "policy_type"])
            await session.commit()

    async def close(self):
        await self.analyzer.close()

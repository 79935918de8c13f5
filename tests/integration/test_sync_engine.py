"""
Integration tests for the sync engine: orchestrator, drivers, progress
store and providers working against a real (SQLite) database
"""

import asyncio

import pytest
import pytest_asyncio
from datetime import datetime, timedelta
from sqlalchemy import func, select, update as sa_update

from core.exceptions import (
    NothingToResume,
    PersistenceError,
    SyncAlreadyRunningError,
    UnknownSyncTypeError
)
from models.base import SyncMode, SyncType
from models.policies import PetPolicy
from models.reference_data import Airline, Airport
from models.sync_progress import SyncProgress
from schemas.normalized import PetPolicyCreate
from sync.continuation import DriverState
from sync.orchestrator import SyncOrchestrator
from sync.providers.cirium import AirlineProvider, AirportProvider

from conftest import FakePolicyProvider, no_sleep

PET = SyncType.PET_POLICIES


class FakeSource:
    """
    Builds FakePolicyProviders that share one backing store, the way real
    providers share the content tables across jobs.
    """

    def __init__(self, count=25, fail_ids=(), fatal_ids=(), fetch_delay=0, count_delay=0):
        self.items = [{"id": f"item-{i:03d}"} for i in range(count)]
        self.fail_ids = set(fail_ids)
        self.fatal_ids = set(fatal_ids)
        self.fetch_delay = fetch_delay
        self.count_delay = count_delay
        self.stored = {}
        self.built = []

    def __call__(self, session_factory, options):
        provider = FakePolicyProvider(
            session_factory,
            options,
            items=self.items,
            fail_ids=self.fail_ids,
            fatal_ids=self.fatal_ids,
            fetch_delay=self.fetch_delay,
            count_delay=self.count_delay
        )
        provider.stored = self.stored
        self.built.append(provider)
        return provider


class ResolvingProvider(FakePolicyProvider):
    """Narrows its work set while counting, like a smart update"""

    async def count_total(self):
        self.options["item_ids"] = ["item-001", "item-002"]
        return 2

    async def fetch_candidates(self, offset, batch_size, resume_token=None):
        self.items = [{"id": i} for i in self.options["item_ids"]]
        return await super().fetch_candidates(offset, batch_size, resume_token)


class FixedCirium:
    def __init__(self, payload):
        self.payload = payload

    async def get_json(self, path, max_attempts=None):
        return self.payload

    async def close(self):
        pass


@pytest.fixture
def source():
    return FakeSource()


@pytest_asyncio.fixture
async def make_orchestrator(session_factory):
    created = []

    def make(providers, factory=None, **kwargs):
        kwargs.setdefault("default_cooldown", 0)
        kwargs.setdefault("sleep", no_sleep)
        orchestrator = SyncOrchestrator(factory or session_factory, providers=providers, **kwargs)
        created.append(orchestrator)
        return orchestrator

    yield make

    for orchestrator in created:
        await orchestrator.shutdown()


async def run_to_end(orchestrator, sync_type, **start_kwargs):
    await orchestrator.start(sync_type, **start_kwargs)
    state = await orchestrator.wait(sync_type)
    return state, await orchestrator.status(sync_type)


class TestFullSync:
    """Start to completion"""

    @pytest.mark.asyncio
    async def test_chunks_run_back_to_back(self, make_orchestrator, source):
        orchestrator = make_orchestrator({PET: source})
        snapshots = []
        orchestrator.notifier.subscribe(snapshots.append, sync_type=PET)

        state, final = await run_to_end(orchestrator, PET, batch_size=10)

        assert state == DriverState.COMPLETE
        assert source.built[0].fetch_offsets == [0, 10, 20]
        assert final.total == 25
        assert final.processed == 25
        assert final.is_complete is True
        assert final.needs_continuation is False
        assert final.error_items == []
        assert len(final.processed_items) == 25
        assert final.batch_metrics["success_rate"] == 100.0

        processed = [s.processed for s in snapshots]
        assert processed == sorted(processed)
        assert snapshots[-1].is_complete is True

    @pytest.mark.asyncio
    async def test_partial_failures_are_recorded(self, make_orchestrator):
        source = FakeSource(fail_ids={"item-003", "item-017"})
        orchestrator = make_orchestrator({PET: source})

        state, final = await run_to_end(orchestrator, PET, batch_size=10)

        assert state == DriverState.COMPLETE
        assert final.processed == 25
        assert [e.id for e in final.error_items] == ["item-003", "item-017"]
        assert all(e.message.startswith("ValueError:") for e in final.error_items)
        assert len(final.processed_items) == 23
        assert "item-003" not in source.stored

    @pytest.mark.asyncio
    async def test_provider_options_survive_for_resume(self, make_orchestrator, session_factory):
        orchestrator = make_orchestrator({PET: ResolvingProvider})

        state, final = await run_to_end(orchestrator, PET, provider_options={"smart_update": True})

        assert state == DriverState.COMPLETE
        assert final.provider_options == {"smart_update": True, "item_ids": ["item-001", "item-002"]}
        assert final.processed_items == ["item-001", "item-002"]

    @pytest.mark.asyncio
    async def test_unknown_sync_type(self, make_orchestrator, source):
        orchestrator = make_orchestrator({PET: source})

        with pytest.raises(UnknownSyncTypeError):
            await orchestrator.start(SyncType.AIRLINES)

    @pytest.mark.asyncio
    async def test_second_start_rejected_while_running(self, make_orchestrator):
        source = FakeSource(fetch_delay=0.5)
        orchestrator = make_orchestrator({PET: source})

        await orchestrator.start(PET, batch_size=10)
        assert orchestrator.is_running(PET)
        assert orchestrator.running_types() == [PET]

        with pytest.raises(SyncAlreadyRunningError):
            await orchestrator.start(PET, batch_size=10)
        with pytest.raises(SyncAlreadyRunningError):
            await orchestrator.resume(PET)

        await orchestrator.shutdown()
        row = await orchestrator.status(PET)
        assert row.is_complete is False

    @pytest.mark.asyncio
    async def test_resume_rejected_while_start_is_counting(self, make_orchestrator):
        source = FakeSource(fatal_ids={"item-012"})
        orchestrator = make_orchestrator({PET: source})
        state, failed = await run_to_end(orchestrator, PET, batch_size=10)
        assert state == DriverState.FAILED
        assert failed.needs_continuation is True

        source.fatal_ids.clear()
        source.count_delay = 0.3
        starting = asyncio.create_task(orchestrator.start(PET, batch_size=10))
        await asyncio.sleep(0.05)

        with pytest.raises(SyncAlreadyRunningError):
            await orchestrator.resume(PET)
        with pytest.raises(SyncAlreadyRunningError):
            await orchestrator.start(PET, batch_size=10)

        started = await starting
        state = await orchestrator.wait(PET)
        final = await orchestrator.status(PET)

        assert started.job_id != failed.job_id
        assert state == DriverState.COMPLETE
        assert len(source.built) == 2
        assert source.built[1].fetch_offsets == [0, 10, 20]
        assert final.job_id == started.job_id
        assert final.processed == 25

    @pytest.mark.asyncio
    async def test_orphan_sweep_skips_type_with_start_in_flight(self, make_orchestrator, store, session_factory):
        source = FakeSource(count_delay=0.3)
        orchestrator = make_orchestrator({PET: source}, store=store, enable_recovery=False)
        await store.initialize(PET, 25, batch_size=10)
        await store.update(PET, {"processed": 20, "needs_continuation": True})
        async with session_factory() as session:
            await session.execute(
                sa_update(SyncProgress)
                .where(SyncProgress.type == PET)
                .values(updated_at=datetime.utcnow() - timedelta(hours=1))
            )
            await session.commit()

        starting = asyncio.create_task(orchestrator.start(PET, batch_size=10))
        await asyncio.sleep(0.05)
        orphaned = await store.get(PET)

        assert orchestrator.scheduler.should_recover(orphaned) is False
        assert await orchestrator.recover_orphans(stale_after_seconds=300) == []

        await starting
        state = await orchestrator.wait(PET)

        assert state == DriverState.COMPLETE
        assert len(source.built) == 1
        assert source.built[0].fetch_offsets == [0, 10, 20]


class TestResume:
    """Continuing interrupted jobs"""

    @pytest.mark.asyncio
    async def test_resume_after_fatal_error(self, make_orchestrator):
        source = FakeSource(fatal_ids={"item-012"})
        orchestrator = make_orchestrator({PET: source})

        state, failed = await run_to_end(orchestrator, PET, batch_size=10)

        assert state == DriverState.FAILED
        assert failed.processed == 10
        assert failed.needs_continuation is True
        assert failed.is_complete is False
        assert "AuthenticationError" in failed.last_error

        source.fatal_ids.clear()
        resumed = await orchestrator.resume(PET)
        state = await orchestrator.wait(PET)
        final = await orchestrator.status(PET)

        assert resumed.job_id == failed.job_id
        assert state == DriverState.COMPLETE
        assert source.built[1].fetch_offsets == [10, 20]
        assert final.job_id == failed.job_id
        assert final.processed == 25
        assert len(final.processed_items) == 25
        assert final.last_error is None

    @pytest.mark.asyncio
    async def test_nothing_to_resume(self, make_orchestrator, source):
        orchestrator = make_orchestrator({PET: source})

        with pytest.raises(NothingToResume):
            await orchestrator.resume(PET)

        await run_to_end(orchestrator, PET)
        with pytest.raises(NothingToResume):
            await orchestrator.resume(PET)

    @pytest.mark.asyncio
    async def test_orphan_sweep_restarts_stale_job(self, make_orchestrator, source, store, session_factory):
        orchestrator = make_orchestrator({PET: source}, store=store, enable_recovery=False)
        await store.initialize(PET, 25, batch_size=10)
        await store.update(PET, {"processed": 20, "needs_continuation": True})

        assert await orchestrator.recover_orphans(stale_after_seconds=300) == []

        async with session_factory() as session:
            await session.execute(
                sa_update(SyncProgress)
                .where(SyncProgress.type == PET)
                .values(updated_at=datetime.utcnow() - timedelta(hours=1))
            )
            await session.commit()

        assert await orchestrator.recover_orphans(stale_after_seconds=300) == [PET]
        state = await orchestrator.wait(PET)
        final = await orchestrator.status(PET)

        assert state == DriverState.COMPLETE
        assert source.built[0].fetch_offsets == [20]
        assert final.processed == 25


class TestModes:
    """Clear and update modes"""

    @pytest.mark.asyncio
    async def test_update_mode_skips_unchanged_content(self, make_orchestrator, source):
        orchestrator = make_orchestrator({PET: source})
        await run_to_end(orchestrator, PET, mode=SyncMode.UPDATE)

        state, final = await run_to_end(orchestrator, PET, mode=SyncMode.UPDATE)

        assert state == DriverState.COMPLETE
        assert final.items_skipped == 25
        assert final.processed == 25
        assert source.built[1].upserts == []

    @pytest.mark.asyncio
    async def test_update_mode_writes_changed_content(self, make_orchestrator, source):
        orchestrator = make_orchestrator({PET: source})
        await run_to_end(orchestrator, PET, mode=SyncMode.UPDATE)
        source.items[4]["pets"] = ["dogs"]

        _, final = await run_to_end(orchestrator, PET, mode=SyncMode.UPDATE)

        assert final.items_skipped == 24
        assert source.built[1].upserts == ["item-004"]
        assert source.stored["item-004"].pet_types_allowed == ["dogs"]

    @pytest.mark.asyncio
    async def test_clear_mode_rewrites_everything(self, make_orchestrator, source):
        orchestrator = make_orchestrator({PET: source})
        await run_to_end(orchestrator, PET)

        _, final = await run_to_end(orchestrator, PET)

        assert final.items_skipped == 0
        assert len(source.built[1].upserts) == 25

    @pytest.mark.asyncio
    async def test_clear_existing_purges_and_forces_clear_mode(self, make_orchestrator, source):
        source.stored["legacy"] = PetPolicyCreate(airline_id="legacy")
        orchestrator = make_orchestrator({PET: source})

        _, final = await run_to_end(orchestrator, PET, clear_existing=True, mode=SyncMode.UPDATE)

        assert source.built[0].cleared == 1
        assert "legacy" not in source.stored
        assert len(source.stored) == 25
        assert final.mode == SyncMode.CLEAR


class TestReferenceData:
    """Real provider against the database"""

    @pytest.mark.asyncio
    async def test_airport_sync_is_idempotent(self, make_orchestrator, session_factory, mock_cirium_airports):
        def airports(factory, options):
            return AirportProvider(factory, options, client=FixedCirium(mock_cirium_airports))

        orchestrator = make_orchestrator({SyncType.AIRPORTS: airports})

        state, first = await run_to_end(orchestrator, SyncType.AIRPORTS, batch_size=2)
        _, second = await run_to_end(orchestrator, SyncType.AIRPORTS, batch_size=2, mode=SyncMode.UPDATE)

        async with session_factory() as session:
            count = (await session.execute(select(func.count()).select_from(Airport))).scalar_one()
            narita = (await session.execute(select(Airport).where(Airport.iata_code == "NRT"))).scalar_one()

        assert state == DriverState.COMPLETE
        assert first.processed == 3
        assert first.processed_items == ["JFK", "LHR", "NRT"]
        assert second.items_skipped == 3
        assert count == 3
        assert narita.timezone == "Asia/Tokyo"

    @pytest.mark.asyncio
    async def test_clearing_airlines_removes_their_pet_policies(
        self, make_orchestrator, fk_session_factory, mock_cirium_airlines
    ):
        async with fk_session_factory() as session:
            session.add(Airline(id="old-aa", iata_code="AA", name="American Airlines", active=True))
            await session.flush()
            session.add(PetPolicy(airline_id="old-aa", pet_types_allowed=["dogs in cabin"]))
            await session.commit()

        def airlines(factory, options):
            return AirlineProvider(factory, options, client=FixedCirium(mock_cirium_airlines))

        orchestrator = make_orchestrator({SyncType.AIRLINES: airlines}, factory=fk_session_factory)
        state, final = await run_to_end(orchestrator, SyncType.AIRLINES, clear_existing=True)

        async with fk_session_factory() as session:
            policies = (await session.execute(select(func.count()).select_from(PetPolicy))).scalar_one()
            codes = (await session.execute(select(Airline.iata_code).order_by(Airline.iata_code))).scalars().all()

        assert state == DriverState.COMPLETE
        assert final.processed == 3
        assert policies == 0
        assert codes == ["AA", "BA", "LH"]

    @pytest.mark.asyncio
    async def test_storage_failure_while_clearing_is_a_persistence_error(
        self, make_orchestrator, unmigrated_session_factory, mock_cirium_airlines
    ):
        def airlines(factory, options):
            return AirlineProvider(factory, options, client=FixedCirium(mock_cirium_airlines))

        orchestrator = make_orchestrator({SyncType.AIRLINES: airlines}, factory=unmigrated_session_factory)

        with pytest.raises(PersistenceError) as exc_info:
            await orchestrator.start(SyncType.AIRLINES, clear_existing=True)
        assert exc_info.value.context["operation"] == "clear"

        # the failed start released the type
        with pytest.raises(PersistenceError):
            await orchestrator.start(SyncType.AIRLINES, clear_existing=True)
        assert orchestrator.is_running(SyncType.AIRLINES) is False

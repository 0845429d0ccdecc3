"""
Sync Service Tests

End-to-end pull-sync runs against the fake registry: download, normalize,
reconcile and record the run.
"""

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import TOKEN_URL, FakeClock, FakeResponse, make_credentials, token_response
from connectors.errors import SyncAlreadyRunningError, TransportError
from connectors.haulmer.client import HaulmerApiConfig, HaulmerClient
from connectors.haulmer.models import DocumentType
from normalization.records import DtePurchaseRecord, DteSaleRecord
from storage.memory import InMemoryRecordStore, InMemoryRunLogStore
from sync.models import RunStatus, SyncScope, TriggerSource, UnitStatus
from sync.run_tracker import RunTracker
from sync.service import MAX_SKIPPED_ROWS, SyncService, previous_periods, validate_periods


API_ROOT = "https://registry.test/registro"
TENANT = "76000000-0"
SALES_CSV = '"N° Documento";"Monto Neto";"Monto IVA"\n"A1";"100";"19"\n"A2";"200";"38"\n'
PURCHASES_CSV = "RUT;Razón Social;Folio;Monto Total\n76123456-7;Proveedor SpA;55;11.900\n"


def export_url(doc_type, period):
    segment = "ventas" if doc_type is DocumentType.SALES else "compras"
    return f"{API_ROOT}/{segment}/detalle/{TENANT}/periodo/{period}/csv"


def service_scope():
    return SyncScope(periods=("202301",))


def build_service(session, clock, records=None):
    client = HaulmerClient(
        HaulmerApiConfig(tenant_id=TENANT, api_root=API_ROOT),
        make_credentials(session, clock),
        session=session,
    )
    return SyncService(
        client,
        records or InMemoryRecordStore(),
        RunTracker(InMemoryRunLogStore(), clock=clock),
        clock=clock,
    )


@pytest.fixture
def registry(fake_session):
    fake_session.add("POST", TOKEN_URL, token_response())
    return fake_session


class TestRunSync:
    """Full runs over the fake registry."""

    def test_first_run_inserts_then_rerun_skips(self, registry, clock):
        registry.add("GET", export_url(DocumentType.SALES, "202401"), FakeResponse(200, SALES_CSV))
        service = build_service(registry, clock)

        first = asyncio.run(service.run_sync(["202401"], ["sales"]))
        second = asyncio.run(service.run_sync(["202401"], ["sales"]))

        assert first.status is RunStatus.SUCCESS
        assert first.totals.inserted == 2
        assert first.units[0].counters.processed == 2
        assert first.units[0].csv_size == len(SALES_CSV)
        assert second.status is RunStatus.SUCCESS
        assert second.totals.inserted == 0
        assert second.totals.skipped == 2
        assert service.records.writes == 2

    def test_changed_amount_updates(self, registry, clock):
        changed = SALES_CSV.replace('"200"', '"250"')
        registry.add(
            "GET",
            export_url(DocumentType.SALES, "202401"),
            FakeResponse(200, SALES_CSV),
            FakeResponse(200, changed),
        )
        service = build_service(registry, clock)

        asyncio.run(service.run_sync(["202401"], ["sales"]))
        run = asyncio.run(service.run_sync(["202401"], ["sales"]))

        assert run.totals.updated == 1
        assert run.totals.skipped == 1
        stored = service.records.find(DteSaleRecord, ("A2",))
        assert str(stored.fields["net_amount"]) == "250"

    def test_records_carry_registry_origin_and_period(self, registry, clock):
        registry.add("GET", export_url(DocumentType.SALES, "202401"), FakeResponse(200, SALES_CSV))
        service = build_service(registry, clock)

        asyncio.run(service.run_sync(["202401"], ["sales"]))

        stored = service.records.find(DteSaleRecord, ("A1",))
        assert stored.fields["origin"] == "HAULMER"
        assert stored.fields["period"] == "202401"
        assert stored.fields["document_type"] == 41

    def test_units_cover_every_period_and_doc_type(self, registry, clock):
        for period in ("202401", "202402"):
            registry.add("GET", export_url(DocumentType.SALES, period), FakeResponse(200, SALES_CSV))
            registry.add("GET", export_url(DocumentType.PURCHASES, period), FakeResponse(200, PURCHASES_CSV))
        service = build_service(registry, clock)

        run = asyncio.run(service.run_sync(["202401", "202402"]))

        assert [(u.period, u.doc_type) for u in run.units] == [
            ("202401", DocumentType.SALES),
            ("202401", DocumentType.PURCHASES),
            ("202402", DocumentType.SALES),
            ("202402", DocumentType.PURCHASES),
        ]
        assert service.records.find(DtePurchaseRecord, ("76123456-7", "55")) is not None

    def test_not_found_is_empty_success(self, registry, clock):
        registry.add("GET", export_url(DocumentType.SALES, "202401"), FakeResponse(404, "no data"))
        service = build_service(registry, clock)

        run = asyncio.run(service.run_sync(["202401"], ["sales"]))

        assert run.status is RunStatus.SUCCESS
        assert run.units[0].status is UnitStatus.EMPTY
        assert run.totals.processed == 0

    def test_one_failed_unit_is_partial(self, registry, clock):
        registry.add("GET", export_url(DocumentType.SALES, "202401"), FakeResponse(200, SALES_CSV))
        registry.add("GET", export_url(DocumentType.PURCHASES, "202401"), FakeResponse(503, "maintenance"))
        service = build_service(registry, clock)

        run = asyncio.run(service.run_sync(["202401"]))

        assert run.status is RunStatus.PARTIAL
        failed = run.units[1]
        assert failed.status is UnitStatus.FAILED
        assert "503" in failed.error

    def test_credentials_unavailable_fails_run(self, fake_session, clock):
        fake_session.add("POST", TOKEN_URL, FakeResponse(401, "bad password"))
        service = build_service(fake_session, clock)

        run = asyncio.run(service.run_sync(["202401"]))

        assert run.status is RunStatus.FAILED
        assert run.units == []
        assert run.error_message.startswith("Authentication failed")

    def test_rows_without_key_are_skipped_and_capped(self, registry, clock):
        rows = "\n".join(f";{index}" for index in range(MAX_SKIPPED_ROWS + 10))
        registry.add("GET", export_url(DocumentType.SALES, "202401"), FakeResponse(200, f"Folio;Monto Neto\n{rows}\n"))
        service = build_service(registry, clock)

        run = asyncio.run(service.run_sync(["202401"], ["sales"]))

        unit = run.units[0]
        assert unit.status is UnitStatus.SUCCESS
        assert unit.counters.skipped == MAX_SKIPPED_ROWS + 10
        assert len(unit.skipped_rows) == MAX_SKIPPED_ROWS
        assert "folio" in unit.skipped_rows[0].reason

    def test_header_only_export_succeeds_empty(self, registry, clock):
        registry.add("GET", export_url(DocumentType.SALES, "202401"), FakeResponse(200, "Folio;Monto Neto\n"))
        service = build_service(registry, clock)

        run = asyncio.run(service.run_sync(["202401"], ["sales"]))

        assert run.status is RunStatus.SUCCESS
        assert run.units[0].counters.processed == 0

    @pytest.mark.parametrize("periods, doc_types", [
        ([], None),
        (["2024-01"], None),
        (["202413"], None),
        (["202401"], ["boletas"]),
        (["202401"], []),
    ])
    def test_invalid_scope_rejected(self, registry, clock, periods, doc_types):
        service = build_service(registry, clock)

        with pytest.raises(ValueError):
            asyncio.run(service.run_sync(periods, doc_types))
        assert service.tracker.store.list(10, 0)[1] == 0


class TestInFlight:
    """Overlapping runs over the same scope."""

    def _blocking_service(self, clock):
        release = asyncio.Event()

        async def slow_download(doc_type, period):
            await release.wait()
            return "Folio\n1\n"

        client = MagicMock()
        client.credentials.get_credential = AsyncMock()
        client.download_export = AsyncMock(side_effect=slow_download)
        service = SyncService(
            client,
            InMemoryRecordStore(),
            RunTracker(InMemoryRunLogStore(), clock=clock),
            clock=clock,
        )
        return service, release

    def test_same_scope_rejected_while_running(self, clock):
        async def scenario():
            service, release = self._blocking_service(clock)
            first = asyncio.create_task(service.run_sync(["202401"], ["sales"]))
            await asyncio.sleep(0.01)

            with pytest.raises(SyncAlreadyRunningError):
                await service.run_sync(["202401"], ["sales"])

            release.set()
            run = await first
            return service, run

        service, run = asyncio.run(scenario())
        assert run.status is RunStatus.SUCCESS
        assert service.tracker.store.list(10, 0)[1] == 1

    def test_scope_key_ignores_order(self, clock):
        async def scenario():
            service, release = self._blocking_service(clock)
            first = asyncio.create_task(service.run_sync(["202401", "202402"], ["sales", "purchases"]))
            await asyncio.sleep(0.01)
            with pytest.raises(SyncAlreadyRunningError):
                await service.run_sync(["202402", "202401"], ["purchases", "sales"])
            release.set()
            await first

        asyncio.run(scenario())

    def test_scheduled_sync_skips_when_in_flight(self, clock):
        async def scenario():
            service, release = self._blocking_service(clock)
            first = asyncio.create_task(service.run_sync(service.default_periods()))
            await asyncio.sleep(0.01)
            skipped = await service.run_scheduled_sync()
            release.set()
            await first
            return skipped

        assert asyncio.run(scenario()) is None

    def test_scope_released_after_failure(self, clock):
        service, _ = self._blocking_service(clock)
        service.client.download_export = AsyncMock(side_effect=TransportError("boom"))

        first = asyncio.run(service.run_sync(["202401"], ["sales"]))
        second = asyncio.run(service.run_sync(["202401"], ["sales"]))

        assert first.status is RunStatus.FAILED
        assert first.error_message == "boom"
        assert second.status is RunStatus.FAILED


class TestScheduledSync:
    """Default scope and the never-raising entry point."""

    def test_default_periods_in_local_zone(self, registry):
        # 02:00 UTC on April 1st is still March 31st in Santiago
        clock = FakeClock(datetime(2024, 4, 1, 2, 0, tzinfo=timezone.utc))
        service = build_service(registry, clock)

        assert service.default_periods() == ["202402", "202403"]

    def test_previous_periods_cross_year(self):
        assert previous_periods(datetime(2024, 1, 10), 2) == ["202311", "202312", "202401"]

    def test_validate_periods_dedupes(self):
        assert validate_periods(["202401", " 202401 ", "202312"]) == ["202401", "202312"]

    def test_scheduled_run_cleans_stale_runs_first(self, registry, clock):
        service = build_service(registry, clock)
        stale_id = service.tracker.start(service_scope(), TriggerSource.SCHEDULED)
        clock.advance(minutes=20)

        run = asyncio.run(service.run_scheduled_sync())

        assert run.trigger_source is TriggerSource.SCHEDULED
        assert service.tracker.store.get(stale_id).status is RunStatus.FAILED

    def test_scheduled_sync_never_raises(self, registry, clock):
        service = build_service(registry, clock)
        service.tracker.cleanup_stale_runs = MagicMock(side_effect=RuntimeError("disk full"))

        assert asyncio.run(service.run_scheduled_sync()) is None

    def test_webhook_trigger_recorded(self, registry, clock):
        service = build_service(registry, clock)

        run = asyncio.run(service.run_scheduled_sync(trigger=TriggerSource.WEBHOOK))

        assert run.trigger_source is TriggerSource.WEBHOOK


class TestRunHistory:
    """Paged run history."""

    def _service_with_runs(self, registry, clock, count):
        service = build_service(registry, clock)
        for _ in range(count):
            asyncio.run(service.run_sync(["202401"], ["sales"]))
            clock.advance(seconds=1)
        return service

    def test_newest_first(self, registry, clock):
        service = self._service_with_runs(registry, clock, 3)

        page = service.list_runs(limit=2)

        assert page.total == 3
        assert len(page.runs) == 2
        assert page.runs[0].started_at > page.runs[1].started_at

    @pytest.mark.parametrize("limit, offset, expected_limit, expected_offset", [
        (1000, 0, 200, 0),
        (0, 0, 1, 0),
        (-3, -5, 1, 0),
        (20, 2, 20, 2),
    ])
    def test_paging_is_clamped(self, registry, clock, limit, offset, expected_limit, expected_offset):
        service = self._service_with_runs(registry, clock, 1)

        page = service.list_runs(limit=limit, offset=offset)

        assert (page.limit, page.offset) == (expected_limit, expected_offset)

    def test_abandoned_runs_flagged(self, registry, clock):
        service = build_service(registry, clock)
        run_id = service.tracker.start(service_scope(), TriggerSource.MANUAL)
        clock.advance(minutes=30)

        assert service.get_run(run_id).abandoned is True
        assert service.list_runs().runs[0].abandoned is True

    def test_get_unknown_run(self, registry, clock):
        assert build_service(registry, clock).get_run("missing") is None

    def test_available_periods_rejects_unknown_type(self, registry, clock):
        with pytest.raises(ValueError):
            asyncio.run(build_service(registry, clock).available_periods("boletas"))

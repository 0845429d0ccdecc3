"""Sync engine worker.

Single process that runs:
- the cron pull-sync scheduler (DTE registry → record store)
- the adaptive calendar channel maintenance scheduler
- the FastAPI adapter (manual trigger, run history, calendar webhook)

Run with --once to sync the default (or given) periods and exit.
"""

import argparse
import asyncio
import sys
from dataclasses import dataclass
from typing import List, Optional

import aiohttp
import uvicorn

from api.server import create_app
from connectors.auth import CredentialStore, google_auth_config, haulmer_auth_config
from connectors.google_calendar.client import GoogleCalendarClient
from connectors.haulmer.client import HaulmerApiConfig, HaulmerClient
from core.config import Settings
from core.observability.logging import configure_logging, get_logger, with_correlation
from scheduling.scheduler import ChannelMaintenanceScheduler, CronSyncScheduler
from storage.sqlite import SqliteChannelStore, SqliteRecordStore, SqliteRunLogStore, init_db
from sync.models import RunStatus, TriggerSource
from sync.run_tracker import RunTracker
from sync.service import SyncService
from watch_channels.manager import ChannelLifecycleManager
from watch_channels.models import WatchedResource
from watch_channels.webhook import WebhookDispatcher

logger = get_logger(__name__)


@dataclass
class Runtime:
    """Wired components of one worker process."""
    settings: Settings
    sync_service: SyncService
    channel_manager: ChannelLifecycleManager
    dispatcher: WebhookDispatcher
    cron_scheduler: CronSyncScheduler
    maintenance_scheduler: ChannelMaintenanceScheduler


def build_runtime(settings: Settings, session: Optional[aiohttp.ClientSession] = None) -> Runtime:
    """Wire stores, connectors, services and schedulers from settings."""
    init_db(settings.db_path)

    haulmer_credentials = CredentialStore(
        haulmer_auth_config(settings.haulmer_email, settings.haulmer_password, settings.haulmer_token_url),
        session=session,
    )
    haulmer_client = HaulmerClient(
        HaulmerApiConfig(
            tenant_id=settings.tenant_id,
            workspace_id=settings.workspace_id,
            api_root=settings.haulmer_api_root,
        ),
        haulmer_credentials,
        session=session,
    )
    sync_service = SyncService(
        haulmer_client,
        SqliteRecordStore(settings.db_path),
        RunTracker(SqliteRunLogStore(settings.db_path)),
        timezone=settings.timezone,
        lookback_months=settings.lookback_months,
    )

    channel_store = SqliteChannelStore(settings.db_path)
    for calendar_id in settings.calendar_ids:
        channel_store.save_resource(WatchedResource(id=calendar_id, external_id=calendar_id, name=calendar_id))

    google_credentials = CredentialStore(
        google_auth_config(
            settings.google_client_id,
            settings.google_client_secret,
            settings.google_refresh_token,
            settings.google_token_url,
        ),
        session=session,
    )
    channel_manager = ChannelLifecycleManager(
        GoogleCalendarClient(google_credentials, settings.calendar_api_root, session=session),
        channel_store,
        settings.callback_address,
    )

    async def sync_on_change(channel_id: str) -> None:
        await sync_service.run_scheduled_sync(trigger=TriggerSource.WEBHOOK)

    dispatcher = WebhookDispatcher(sync_on_change, channels=channel_store)

    return Runtime(
        settings=settings,
        sync_service=sync_service,
        channel_manager=channel_manager,
        dispatcher=dispatcher,
        cron_scheduler=CronSyncScheduler(
            sync_service.run_scheduled_sync,
            settings.cron_expressions,
            settings.timezone,
        ),
        maintenance_scheduler=ChannelMaintenanceScheduler(channel_manager),
    )


async def run_once(settings: Settings, periods: Optional[List[str]], doc_types: Optional[List[str]]) -> int:
    """Sync once and return a process exit code."""
    async with aiohttp.ClientSession() as session:
        runtime = build_runtime(settings, session)
        service = runtime.sync_service
        service.tracker.cleanup_stale_runs()
        run = await service.run_sync(
            periods or service.default_periods(),
            doc_types,
            trigger=TriggerSource.MANUAL,
        )
    totals = run.totals
    logger.info(
        "sync_once_complete",
        extra_fields={
            "run_id": run.id,
            "status": run.status.value,
            "inserted": totals.inserted,
            "updated": totals.updated,
            "skipped": totals.skipped,
        },
    )
    return 0 if run.status is RunStatus.SUCCESS else 1


async def run_worker(settings: Settings, host: str, port: int, serve_api: bool = True) -> None:
    """Run schedulers (and optionally the API) until cancelled."""
    async with aiohttp.ClientSession() as session:
        runtime = build_runtime(settings, session)
        runtime.sync_service.tracker.cleanup_stale_runs()

        with with_correlation(tenant_id=settings.tenant_id):
            runtime.cron_scheduler.start()
            if settings.google_configured:
                runtime.maintenance_scheduler.start()
            else:
                logger.info("channel_maintenance_disabled", extra_fields={"reason": "google credentials not set"})

            logger.info("worker_running")
            try:
                if serve_api:
                    app = create_app(runtime.sync_service, runtime.dispatcher)
                    server = uvicorn.Server(uvicorn.Config(app, host=host, port=port, log_config=None))
                    await server.serve()
                else:
                    await asyncio.Event().wait()
            finally:
                runtime.cron_scheduler.close()
                runtime.maintenance_scheduler.close()
                runtime.dispatcher.close()
                logger.info("worker_stopped")


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for worker with CLI args."""
    parser = argparse.ArgumentParser(description="DTE sync worker")
    parser.add_argument("--once", action="store_true", help="Run one sync and exit")
    parser.add_argument("--periods", nargs="+", help="YYYYMM periods for --once (default: current and lookback)")
    parser.add_argument("--doc-types", nargs="+", choices=["sales", "purchases"], help="Document types for --once")
    parser.add_argument("--no-api", action="store_true", help="Do not serve the HTTP API")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=5000)

    args = parser.parse_args(argv)
    settings = Settings.from_env()
    configure_logging(level=settings.log_level, json_format=settings.log_json)

    if args.once:
        return asyncio.run(run_once(settings, args.periods, args.doc_types))

    try:
        asyncio.run(run_worker(settings, args.host, args.port, serve_api=not args.no_api))
    except KeyboardInterrupt:
        logger.info("worker_interrupted")
    return 0


if __name__ == "__main__":
    sys.exit(main())

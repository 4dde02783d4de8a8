"""Ascendant metrics service — application entry point.

Boots the FastAPI internal server and provides the CLI entry point for the
``serve`` and ``report`` commands.
"""

import logging

from fastapi import FastAPI

from app.api.routers import router

app = FastAPI(title="Ascendant Account Metrics API", version="0.1.0")
app.include_router(router)

logger = logging.getLogger("ascendant")


@app.get("/health")
async def health():
    """Liveness probe."""
    return {"status": "ok"}


def build_service(config):
    """Wire an ``AccountService`` from configuration."""
    from app.broker.metaapi_client import MetaApiClient
    from app.models.settings import DashboardSettings
    from app.notify.webhook import WebhookNotifier
    from app.services.account_service import AccountService

    service = AccountService(
        client_factory=lambda account_id: MetaApiClient(config, account_id),
        notifier=WebhookNotifier(config.webhook_url),
        default_settings=DashboardSettings(
            refresh_interval_seconds=config.refresh_interval_seconds,
            history_start=config.history_start,
        ),
    )
    if config.metaapi_account_id:
        service.register(config.metaapi_account_id)
    return service


# ── CLI ──────────────────────────────────────────────────────────────────


def _run_cli() -> None:
    """Parse CLI arguments and dispatch to the requested command."""
    import argparse
    import asyncio

    from app.api.routers import configure_routers
    from app.config import load_config

    parser = argparse.ArgumentParser(description="Ascendant account metrics service")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the internal API server")
    serve.add_argument("--port", type=int, default=None, help="HTTP port")

    report = sub.add_parser("report", help="Print metrics for one account")
    report.add_argument(
        "--account-id",
        default=None,
        help="MetaApi account id (default: METAAPI_ACCOUNT_ID)",
    )
    args = parser.parse_args()

    config = load_config()
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    service = build_service(config)

    if args.command == "report":
        account_id = args.account_id or config.metaapi_account_id
        if not account_id:
            parser.error("--account-id is required when METAAPI_ACCOUNT_ID is unset")
        asyncio.run(_run_report(service, account_id))
        return

    from app.services.watcher import AccountWatcher

    configure_routers(service=service, watcher=AccountWatcher(service))
    _run_server(args.port or config.http_port)


def _run_server(port: int) -> None:
    """Start uvicorn in the foreground."""
    import uvicorn

    logger.info("API available at http://localhost:%d", port)
    uvicorn.run(app, host="0.0.0.0", port=port, log_level="info")


async def _run_report(service, account_id: str) -> None:
    """Fetch metrics and the equity curve for one account and print them."""
    import asyncio

    from app.cli.dashboard import print_metrics

    if account_id not in service.account_ids:
        service.register(account_id)

    metrics, curve = await asyncio.gather(
        service.get_account_metrics(account_id),
        service.get_equity_history(account_id),
    )
    print_metrics(account_id, metrics, curve)


if __name__ == "__main__":
    _run_cli()

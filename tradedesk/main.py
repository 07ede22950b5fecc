"""TradeDesk — application entry point.

Boots the FastAPI internal server and provides the CLI entry point for
serving the API, running a one-off scan and listing strategies.
"""

import logging

from fastapi import FastAPI

from tradedesk.api.routers import router

app = FastAPI(title="TradeDesk Decision API", version="0.1.0")
app.include_router(router)

logger = logging.getLogger("tradedesk")


@app.get("/health")
async def health():
    """Liveness check."""
    return {"status": "ok"}


# ── CLI ──────────────────────────────────────────────────────────────────


def _build_parser():
    import argparse

    parser = argparse.ArgumentParser(description="TradeDesk decision engine")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the API server and lifecycle sweeper")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=None, help="Overrides API_PORT")

    scan = sub.add_parser("scan", help="Run one scan and print decisions as JSON")
    scan.add_argument("--strategy", required=True, help="Strategy id")
    scan.add_argument(
        "--symbols",
        default=None,
        help="Comma-separated symbols (default: DEFAULT_SYMBOLS)",
    )
    scan.add_argument("--account", type=float, default=10000.0, help="Account size")
    scan.add_argument("--risk", type=float, default=0.5, help="Risk percent per trade")
    scan.add_argument("--style", choices=["intraday", "swing"], default="intraday")
    scan.add_argument("--timezone", default="UTC", help="IANA zone for displayed times")
    scan.add_argument("--force", action="store_true", help="Drop an existing scan lock")
    scan.add_argument("--skip-cooldown", action="store_true")
    scan.add_argument("--skip-volatility", action="store_true")

    sub.add_parser("strategies", help="List registered strategies")
    return parser


def _run_cli(argv=None) -> None:
    """Parse CLI arguments and dispatch to the chosen command."""
    import asyncio
    import json

    from tradedesk.config import load_config
    from tradedesk.strategy.registry import list_strategies

    args = _build_parser().parse_args(argv)

    if args.command == "strategies":
        for meta in list_strategies():
            print(f"{meta.id:16} {meta.style:9} {meta.entry_timeframe:3} {meta.name}")
        return

    config = load_config()
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    from tradedesk.services import build_services

    services = build_services(config)
    services.init()

    if args.command == "scan":
        result = asyncio.run(_run_scan(services, args))
        print(json.dumps(result, indent=2))
    else:
        asyncio.run(_serve(services, args.host, args.port or config.api_port))


async def _run_scan(services, args) -> dict:
    from tradedesk.engine import ScanOptions
    from tradedesk.models.settings import UserSettings

    settings = UserSettings(
        account_size=args.account,
        risk_percent=args.risk,
        style=args.style,
        timezone=args.timezone,
    )
    if args.symbols:
        symbols = [s.strip().upper() for s in args.symbols.split(",") if s.strip()]
    else:
        symbols = list(services.config.default_symbols)
    options = ScanOptions(
        force=args.force,
        skip_cooldown=args.skip_cooldown,
        skip_volatility=args.skip_volatility,
    )
    result = await services.engine.evaluate(symbols, args.strategy, settings, options)
    return result.to_dict()


async def _serve(services, host: str, port: int) -> None:
    """Start the API server and the lifecycle sweeper concurrently."""
    import asyncio

    import uvicorn

    from tradedesk.api.routers import configure_routers

    configure_routers(services)

    uvi_config = uvicorn.Config(app, host=host, port=port, log_level="info")
    server = uvicorn.Server(uvi_config)

    async def _run_server():
        try:
            await server.serve()
        finally:
            await services.shutdown()

    logger.info("TradeDesk API available at http://localhost:%d", port)
    results = await asyncio.gather(
        _run_server(),
        services.sweeper.run(),
        return_exceptions=True,
    )
    logger.info("TradeDesk stopped. Results: %s", results)


if __name__ == "__main__":
    _run_cli()

"""CoinForge — application entry point.

Boots the FastAPI internal server and provides the CLI entry point for
paper, live and backtest modes.
"""

import logging

from fastapi import FastAPI

from coinforge.api.routers import router

app = FastAPI(title="CoinForge Internal API", version="0.1.0")
app.include_router(router)

logger = logging.getLogger("coinforge")


def warn_if_live(mode: str) -> bool:
    """Log a prominent warning when running in live mode.

    Returns ``True`` if *mode* is ``"live"``.
    """
    if mode == "live":
        logger.warning(
            "LIVE TRADING MODE: real money at risk! Starting in 5 seconds..."
        )
        return True
    return False


def _parse_date_ms(value, default_ms: int) -> int:
    from datetime import datetime, timezone

    if not value:
        return default_ms
    day = datetime.strptime(value, "%Y-%m-%d").replace(tzinfo=timezone.utc)
    return int(day.timestamp() * 1000)


# ── CLI ──────────────────────────────────────────────────────────────────


def _run_cli() -> None:
    """Parse CLI arguments and dispatch to the appropriate mode."""
    import argparse
    import asyncio
    import dataclasses
    import time

    from coinforge.api.routers import configure_routers
    from coinforge.config import load_config
    from coinforge.container import build_container

    parser = argparse.ArgumentParser(description="CoinForge trading bot")
    parser.add_argument(
        "--mode",
        choices=["paper", "live", "backtest"],
        default="paper",
        help="Trading mode (default: paper)",
    )
    parser.add_argument("--strategy", default="1", help="Strategy id for backtests")
    parser.add_argument("--start", help="Backtest start date (YYYY-MM-DD)")
    parser.add_argument("--end", help="Backtest end date (YYYY-MM-DD)")
    parser.add_argument(
        "--balance", type=float, default=10_000.0,
        help="Backtest initial balance (default: 10000)",
    )
    args = parser.parse_args()

    config = load_config()
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    if args.mode == "paper" and not config.test_mode:
        config = dataclasses.replace(config, test_mode=True)

    container = build_container(config)

    if args.mode == "backtest":
        _run_backtest(container, args.strategy, args.start, args.end, args.balance)
        return

    if warn_if_live(args.mode):
        time.sleep(5)

    configure_routers(container)
    asyncio.run(_run_service(container, args.mode, config.health_port))


async def _run_service(container, mode: str, port: int = 8080) -> None:
    """Start the API server and the trading loop concurrently."""
    import uvicorn

    from coinforge.exchange.stream import StreamMessage

    connection = container.connection
    report = await connection.test_connection()
    logger.info("Connection check: %s", report.status.value)
    if connection.has_credentials():
        container.settings.save_permissions(await connection.detect_permissions())

    await container.orchestrator.start()

    def _on_ticker(message: StreamMessage) -> None:
        data = message.data if isinstance(message.data, dict) else {}
        logger.debug("%s last price %s", message.stream, data.get("c"))

    for pair in container.orchestrator.trading_pairs:
        container.stream.subscribe(pair, "ticker", _on_ticker)
    container.stream.start()

    logger.info("Starting CoinForge in %s mode.", mode)
    server = uvicorn.Server(
        uvicorn.Config(app, host="0.0.0.0", port=port, log_level="info"),
    )
    logger.info("Status API available at http://localhost:%d", port)
    try:
        await server.serve()
    finally:
        await container.shutdown()
        logger.info("CoinForge stopped.")


def _run_backtest(container, strategy_id: str, start_date, end_date, balance: float) -> None:
    """Run the backtest simulator for one strategy and log its stats."""
    import time

    now_ms = int(time.time() * 1000)
    start_ms = _parse_date_ms(start_date, now_ms - 30 * 24 * 3600 * 1000)
    end_ms = _parse_date_ms(end_date, now_ms)

    result = container.backtests.run(strategy_id, start_ms, end_ms, balance)
    stats = result.metrics
    logger.info(
        "Backtest complete: %d trades, final balance $%.2f, win rate %.1f%%, "
        "profit factor %.2f, max drawdown %.2f%%, Sharpe %.2f",
        stats["total_trades"],
        result.final_balance,
        stats["win_rate"],
        stats["profit_factor"],
        stats["max_drawdown"],
        stats["sharpe_ratio"],
    )


if __name__ == "__main__":
    _run_cli()

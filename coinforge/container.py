"""Composition root — builds every long-lived component from a ``Config``.

One ``Container`` per process. Shared state (connection, event bus,
store, position ledger) is owned here and injected downward; no
component reaches for a global.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from coinforge.backtest.simulator import BacktestSimulator
from coinforge.config import Config
from coinforge.engine import Orchestrator
from coinforge.events import EventBus
from coinforge.exchange.connection import ConnectionManager
from coinforge.exchange.models import Credentials
from coinforge.exchange.stream import MarketStream
from coinforge.execution.executor import TradeExecutor
from coinforge.execution.order_router import OrderRouter
from coinforge.market.provider import MarketDataProvider
from coinforge.repos.kv_store import KeyValueStore, SqliteStore
from coinforge.repos.settings_repo import SettingsRepo
from coinforge.repos.trading_log import TradingLogBook
from coinforge.risk.manager import RiskManager
from coinforge.scheduler import Clock, SystemClock
from coinforge.strategy.definitions import StrategyBook

logger = logging.getLogger("coinforge")


@dataclass
class Container:
    config: Config
    clock: Clock
    store: KeyValueStore
    events: EventBus
    settings: SettingsRepo
    log_book: TradingLogBook
    connection: ConnectionManager
    market: MarketDataProvider
    risk: RiskManager
    router: OrderRouter
    executor: TradeExecutor
    strategies: StrategyBook
    orchestrator: Orchestrator
    stream: MarketStream
    backtests: BacktestSimulator

    async def shutdown(self) -> None:
        """Stop trading and release sockets and timers. Idempotent."""
        self.orchestrator.stop()
        await self.orchestrator.drain()
        await self.stream.close()
        self.connection.close()

    def update_credentials(self, credentials: Optional[Credentials]) -> None:
        """Persist and apply a key pair; ``None`` clears it with the cached permissions."""
        if credentials is None:
            self.settings.clear_credentials()
        else:
            self.settings.save_credentials(credentials)
        self.connection.set_credentials(credentials)
        self.market.reset_cache()

    def set_proxy_mode(self, enabled: bool) -> None:
        self.settings.save_proxy_mode(enabled)
        self.connection.set_proxy_mode(enabled)
        self.market.reset_cache()


def _initial_credentials(config: Config, settings: SettingsRepo) -> Optional[Credentials]:
    if config.has_credentials:
        return Credentials(config.api_key, config.api_secret)
    return settings.load_credentials()


def build_container(
    config: Config,
    store: Optional[KeyValueStore] = None,
    clock: Optional[Clock] = None,
    stream: Optional[MarketStream] = None,
) -> Container:
    """Wire the application graph.

    Args:
        config: Loaded configuration.
        store: Key-value store; defaults to SQLite at ``config.db_path``.
        clock: Time source shared by every component.
        stream: Pre-built market stream (tests inject one with a fake
            connect factory).
    """
    clock = clock or SystemClock()
    store = store if store is not None else SqliteStore(config.db_path)
    events = EventBus()
    settings = SettingsRepo(store)

    log_book = TradingLogBook(store, clock=clock.time)
    events.subscribe(log_book.on_event)

    connection = ConnectionManager(
        config.direct_base_url,
        config.proxy_base_url,
        credentials=_initial_credentials(config, settings),
        use_proxy=settings.load_proxy_mode(default=config.use_proxy),
        events=events,
        clock=clock,
    )
    permissions = settings.load_permissions()
    if permissions is not None:
        connection.restore_permissions(permissions.read, permissions.trading)

    market = MarketDataProvider(connection, log_book=log_book, clock=clock.monotonic)
    risk = RiskManager(settings=settings, events=events)
    router = OrderRouter(
        connection, events=events, settings=settings,
        test_mode=config.test_mode, clock=clock,
    )
    executor = TradeExecutor(router, market, risk, events=events, clock=clock)
    strategies = StrategyBook(store, events=events)
    orchestrator = Orchestrator(
        config, market, executor, strategies, events=events, clock=clock,
    )

    logger.info(
        "Container ready: %s mode, proxy %s, credentials %s",
        "test" if config.test_mode else "live",
        "on" if connection.use_proxy else "off",
        connection.api_key_hint if connection.has_credentials() else "absent",
    )
    return Container(
        config=config,
        clock=clock,
        store=store,
        events=events,
        settings=settings,
        log_book=log_book,
        connection=connection,
        market=market,
        risk=risk,
        router=router,
        executor=executor,
        strategies=strategies,
        orchestrator=orchestrator,
        stream=stream or MarketStream(config.stream_url, clock=clock),
        backtests=BacktestSimulator(strategies, store, events=events),
    )

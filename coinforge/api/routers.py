"""Internal API routers — status, settings, strategies, analysis, risk and control.

No business logic. Delegates to the components held by the container.
"""

import logging
import math
from dataclasses import asdict
from typing import Any, Optional

from fastapi import APIRouter, Query

from coinforge.container import Container
from coinforge.exchange.models import Credentials
from coinforge.strategy.models import Aggressiveness

logger = logging.getLogger("coinforge")
router = APIRouter()

_container: Optional[Container] = None   # Set via configure_routers()


def configure_routers(container: Optional[Container]) -> None:
    """Inject the application container (``None`` detaches it)."""
    global _container  # noqa: PLW0603
    _container = container


def _finite(value: Any) -> Any:
    """Replace NaN/inf floats (not JSON-encodable) with ``None``, recursively."""
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if isinstance(value, dict):
        return {k: _finite(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_finite(v) for v in value]
    return value


_NOT_CONFIGURED = {"error": "Application not configured"}


# ── Endpoints ────────────────────────────────────────────────────────────


@router.get("/health")
async def health():
    return {"status": "ok"}


@router.get("/status")
async def get_status():
    """Connection, permissions, execution mode and engine state."""
    if _container is None:
        return _NOT_CONFIGURED
    conn = _container.connection
    permissions = conn.permissions
    return {
        "connection": {
            "status": conn.status.value,
            "use_proxy": conn.use_proxy,
            "direct_reachable": conn.direct_reachable,
            "proxy_working": conn.proxy_working,
            "error_count": conn.error_count,
            "has_credentials": conn.has_credentials(),
            "api_key": conn.api_key_hint,
            "last_error": conn.last_error,
        },
        "permissions": {"read": permissions.read, "trading": permissions.trading},
        "simulation_mode": _container.router.simulation_mode,
        "consecutive_order_errors": _container.router.consecutive_errors,
        "test_mode": _container.router.test_mode,
        "stream": _container.stream.status.value,
        **_container.orchestrator.status(),
    }


@router.get("/positions")
async def get_positions():
    if _container is None:
        return {"positions": []}
    return {"positions": [p.to_dict() for p in _container.executor.positions()]}


@router.get("/logs")
async def get_logs(limit: int = Query(default=50, ge=1, le=100)):
    """Most recent trading log entries, newest first."""
    if _container is None:
        return {"logs": []}
    return {"logs": [asdict(e) for e in _container.log_book.entries(limit)]}


@router.get("/analysis")
async def get_analysis():
    """Latest indicator readings, 1h trends and fused signals per symbol."""
    if _container is None:
        return _NOT_CONFIGURED
    orchestrator = _container.orchestrator
    analysis = {
        symbol: {tf: data.to_dict() for tf, data in frames.items()}
        for symbol, frames in orchestrator.market_analysis().items()
    }
    return _finite({
        "analysis": analysis,
        "trends": {s: t.value for s, t in orchestrator.market_trends().items()},
        "signals": {s: sig.value for s, sig in orchestrator.last_signals().items()},
    })


@router.get("/risk")
async def get_risk():
    if _container is None:
        return _NOT_CONFIGURED
    risk = _container.risk
    return _finite({
        "parameters": risk.parameters.to_dict(),
        "daily": risk.daily.snapshot(),
        "max_exposure_pct": risk.max_exposure_pct(),
    })


@router.put("/risk")
async def put_risk(body: dict):
    """Apply an explicit risk parameter update.

    Invalid values leave the current parameters untouched.
    """
    if _container is None:
        return _NOT_CONFIGURED
    try:
        updated = _container.risk.update_parameters(body)
    except (TypeError, ValueError) as exc:
        return {"status": "error", "errors": [str(exc)]}
    return {"status": "ok", **updated.to_dict()}


@router.post("/simulation")
async def post_simulation(body: dict):
    """Toggle simulated order execution: ``{"enabled": bool}``."""
    if _container is None:
        return _NOT_CONFIGURED
    if not isinstance(body.get("enabled"), bool):
        return {"status": "error", "errors": ["enabled must be a boolean"]}
    _container.router.set_simulation_mode(body["enabled"], reason="user")
    return {"status": "ok", "simulation_mode": _container.router.simulation_mode}


# ── Connection settings ──────────────────────────────────────────────────


@router.put("/credentials")
async def put_credentials(body: dict):
    """Store a new key pair: ``{"api_key": str, "secret_key": str}``."""
    if _container is None:
        return _NOT_CONFIGURED
    credentials = Credentials(
        api_key=str(body.get("api_key") or "").strip(),
        secret_key=str(body.get("secret_key") or "").strip(),
    )
    if not credentials.is_valid:
        return {"status": "error", "errors": ["api_key and secret_key are required"]}
    _container.update_credentials(credentials)
    return {"status": "ok", "api_key": _container.connection.api_key_hint}


@router.delete("/credentials")
async def delete_credentials():
    if _container is None:
        return _NOT_CONFIGURED
    _container.update_credentials(None)
    return {"status": "ok"}


@router.post("/proxy")
async def post_proxy(body: dict):
    """Route requests through the signing proxy: ``{"enabled": bool}``."""
    if _container is None:
        return _NOT_CONFIGURED
    if not isinstance(body.get("enabled"), bool):
        return {"status": "error", "errors": ["enabled must be a boolean"]}
    _container.set_proxy_mode(body["enabled"])
    return {"status": "ok", "use_proxy": _container.connection.use_proxy}


@router.post("/connection/test")
async def run_connection_test():
    """Probe both transports now; a failure schedules reconnection."""
    if _container is None:
        return _NOT_CONFIGURED
    report = await _container.connection.test_connection()
    return {
        "status": report.status.value,
        "direct_ok": report.direct_ok,
        "proxy_ok": report.proxy_ok,
        "error": report.error,
    }


@router.post("/connection/reconnect")
async def reconnect():
    if _container is None:
        return _NOT_CONFIGURED
    conn = _container.connection
    if not conn.schedule_reconnect():
        return {"status": "exhausted", "attempts": conn.reconnect_attempts}
    attempt = conn.reconnect_attempts
    return {"status": "scheduled", "attempt": attempt, "delay": conn.reconnect_delay(attempt)}


# ── Strategies ───────────────────────────────────────────────────────────


@router.get("/strategies")
async def get_strategies():
    if _container is None:
        return {"strategies": []}
    return {"strategies": [s.to_dict() for s in _container.strategies.all()]}


@router.post("/strategies/{strategy_id}/enabled")
async def post_strategy_enabled(strategy_id: str, body: dict):
    """Enable or disable one strategy: ``{"enabled": bool}``. Persisted."""
    if _container is None:
        return _NOT_CONFIGURED
    if not isinstance(body.get("enabled"), bool):
        return {"status": "error", "errors": ["enabled must be a boolean"]}
    try:
        definition = _container.strategies.set_enabled(strategy_id, body["enabled"])
    except KeyError:
        return {"status": "error", "errors": [f"Unknown strategy '{strategy_id}'"]}
    return {"status": "ok", "strategy": definition.to_dict()}


@router.put("/aggressiveness")
async def put_aggressiveness(body: dict):
    """Change how many timeframes must agree: ``{"level": "moderate"}``."""
    if _container is None:
        return _NOT_CONFIGURED
    try:
        _container.orchestrator.set_aggressiveness(str(body.get("level")))
    except ValueError:
        levels = ", ".join(a.value for a in Aggressiveness)
        return {"status": "error", "errors": [f"level must be one of: {levels}"]}
    return {"status": "ok", "aggressiveness": _container.orchestrator.aggressiveness.value}


# ── Control actions ──────────────────────────────────────────────────────


@router.post("/engine/start")
async def start_engine():
    if _container is None:
        return _NOT_CONFIGURED
    orchestrator = _container.orchestrator
    if orchestrator.running:
        return {"status": "already_running"}
    await orchestrator.start()
    logger.info("Trading engine started via API.")
    return {"status": "started", "trading_pairs": orchestrator.trading_pairs}


@router.post("/engine/stop")
async def stop_engine():
    if _container is None:
        return _NOT_CONFIGURED
    orchestrator = _container.orchestrator
    if not orchestrator.running:
        return {"status": "not_running"}
    orchestrator.stop()
    logger.info("Trading engine stopped via API.")
    return {"status": "stopped", "cycle_count": orchestrator.cycle_count}


@router.get("/backtests")
async def get_backtests(strategy_id: Optional[str] = Query(default=None)):
    """Stored backtest results, optionally for one strategy."""
    if _container is None:
        return {"results": []}
    if strategy_id is not None:
        result = _container.backtests.result_for(strategy_id)
        return {"results": [result] if result else []}
    return {"results": _container.backtests.results()}

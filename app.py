# app.py
import logging
from collections import deque
from contextlib import asynccontextmanager
from typing import Deque, Optional

from fastapi import FastAPI, HTTPException
import uvicorn

import config
from core.errors import TransportError
from core.models import TransactionEvent
from wallet_monitor import WalletMonitor, build_monitor

logger = logging.getLogger(__name__)


class RecentEvents:
    """Sink that keeps the last N events in memory for the /events endpoint."""

    def __init__(self, maxlen: int = 200):
        self.events: Deque[TransactionEvent] = deque(maxlen=maxlen)

    def __call__(self, event: TransactionEvent) -> None:
        self.events.append(event)

    def latest(self, limit: int):
        items = list(self.events)[-limit:] if limit > 0 else []
        return list(reversed(items))


def create_app(
    monitor: Optional[WalletMonitor] = None,
    watch_wallet: Optional[str] = None,
    recent: Optional[RecentEvents] = None,
) -> FastAPI:
    recent = recent or RecentEvents(config.RECENT_EVENTS_MAX)
    if monitor is None:
        monitor = build_monitor(sink=recent)
    else:
        monitor.dispatcher.set_sink(recent)
    wallet = config.WATCH_WALLET if watch_wallet is None else watch_wallet

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if wallet:
            try:
                await monitor.start(wallet)
            except TransportError:
                # stay up so /status shows what happened
                logger.error("could not start monitor for %s; service running idle", wallet)
        else:
            logger.warning("WATCH_WALLET not set; service running idle")

        try:
            yield
        finally:
            await monitor.stop()
            await monitor.wait_idle()
            close = getattr(monitor.transport, "close", None)
            if close is not None:
                await close()

    app = FastAPI(lifespan=lifespan)
    app.state.monitor = monitor
    app.state.recent = recent

    @app.get("/health")
    def health():
        return {"ok": True}

    @app.get("/status")
    def status():
        return {
            "ok": True,
            "wallet": monitor.tracked_address,
            "active": monitor.active,
            "stats": monitor.stats.as_dict(),
        }

    @app.get("/events")
    def events(limit: int = 50):
        return {"ok": True, "events": [e.to_dict() for e in recent.latest(limit)]}

    @app.get("/balances")
    async def balances():
        try:
            sol = await monitor.get_wallet_balance()
            tokens = await monitor.get_token_balances()
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except TransportError as e:
            raise HTTPException(status_code=502, detail=str(e))
        return {
            "ok": True,
            "wallet": monitor.tracked_address,
            "sol": str(sol),
            "tokens": [
                {"mint": t.mint, "amount": str(t.amount), "decimals": t.decimals} for t in tokens
            ],
        }

    return app


app = create_app()


if __name__ == "__main__":
    config.setup_logging()
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)

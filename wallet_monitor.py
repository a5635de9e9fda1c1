# wallet_monitor.py
from __future__ import annotations

import asyncio
import logging
import signal
from datetime import datetime, timezone
from decimal import Decimal
from typing import AsyncIterator, List, Optional, Set

import config
from chains.solana_rpc import SolanaRpcClient
from core import balance_diff, log_filter
from core.balance_diff import LAMPORTS_PER_SOL
from core.classifier import classify
from core.dispatcher import EventDispatcher, EventSink
from core.errors import TransportError
from core.fetcher import COMMITMENT, TransactionFetcher, safe_get, to_decimal
from core.models import (
    MonitorSession,
    MonitorStats,
    RawLogNotification,
    TokenHolding,
    TransactionEvent,
)
from core.registry import ReferenceAssetRegistry, build_registry

logger = logging.getLogger(__name__)


class WalletMonitor:
    """
    Watches one wallet's log stream and turns each relevant transaction into
    a classified TransactionEvent.

    The transport must provide subscribe_logs / unsubscribe_logs /
    get_transaction / get_balance / get_token_accounts_by_owner
    (see chains.solana_rpc.SolanaRpcClient).
    """

    def __init__(
        self,
        transport,
        registry: Optional[ReferenceAssetRegistry] = None,
        sink: Optional[EventSink] = None,
        max_inflight: int = 16,
    ):
        self.transport = transport
        self.registry = registry or build_registry()
        self.fetcher = TransactionFetcher(transport)
        self.dispatcher = EventDispatcher(self.registry, sink)
        self.session = MonitorSession()
        self.stats = MonitorStats()

        self._lock = asyncio.Lock()
        self._inflight = asyncio.Semaphore(max(1, int(max_inflight)))
        self._reader_task: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def active(self) -> bool:
        return self.session.active

    @property
    def tracked_address(self) -> Optional[str]:
        return self.session.tracked_address

    # -----------------------------
    # LIFECYCLE
    # -----------------------------
    async def start(self, address: str) -> None:
        address = (address or "").strip()
        if not address:
            raise ValueError("wallet address is required")

        async with self._lock:
            if self.session.active:
                if self.session.tracked_address == address:
                    logger.info("already monitoring %s", address)
                    return
                raise ValueError(
                    f"already monitoring {self.session.tracked_address}; stop it before watching {address}"
                )

            logger.info("starting monitor for %s", address)
            try:
                handle, stream = await self.transport.subscribe_logs(address, commitment=COMMITMENT)
            except TransportError:
                logger.exception("log subscription for %s failed", address)
                self.session = MonitorSession(tracked_address=address)
                raise

            self.session = MonitorSession(tracked_address=address, subscription_handle=handle, active=True)
            self._reader_task = asyncio.create_task(self._read(stream, handle))
            logger.info("monitor started for %s (subscription %s), waiting for transactions", address, handle)

    async def stop(self) -> None:
        async with self._lock:
            if not self.session.active:
                logger.debug("stop() called while not monitoring")
                return

            address = self.session.tracked_address
            handle = self.session.subscription_handle
            # clear local state first so stray notifications are ignored from here on
            self.session = MonitorSession(tracked_address=address)

            try:
                ok = await self.transport.unsubscribe_logs(handle)
                if not ok:
                    logger.warning("node refused to drop subscription %s", handle)
            except Exception:
                logger.exception("unsubscribe of %s failed; local session cleared anyway", handle)

            reader, self._reader_task = self._reader_task, None
            if reader is not None and reader is not asyncio.current_task():
                reader.cancel()
                try:
                    await reader
                except asyncio.CancelledError:
                    pass
            logger.info("monitor stopped for %s", address)

    async def wait_idle(self) -> None:
        """Wait for notifications already being processed to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # -----------------------------
    # STREAM
    # -----------------------------
    async def _read(self, stream: AsyncIterator[RawLogNotification], handle) -> None:
        try:
            async for notification in stream:
                if not self.session.active:
                    break
                # blocks when max_inflight notifications are busy; the transport buffers meanwhile
                await self._inflight.acquire()
                task = asyncio.create_task(self._run_one(notification))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)
        except Exception:
            logger.exception("log stream for %s failed", self.session.tracked_address)

        # stream ended on its own (connection dropped) while this subscription was live
        async with self._lock:
            if self.session.active and self.session.subscription_handle == handle:
                logger.warning("log stream for %s ended; monitor is now inactive", self.session.tracked_address)
                self.session = MonitorSession(tracked_address=self.session.tracked_address)
                self._reader_task = None

    async def _run_one(self, notification: RawLogNotification) -> None:
        try:
            await self.process_notification(notification)
        finally:
            self._inflight.release()

    async def process_notification(self, notification: RawLogNotification) -> Optional[TransactionEvent]:
        """Filter, fetch, diff, classify and dispatch one notification. Never raises."""
        if not self.session.active:
            return None

        address = self.session.tracked_address
        sig = notification.signature
        self.stats.received += 1
        try:
            if not log_filter.passes(notification.lines):
                self.stats.filtered += 1
                return None

            record = await self.fetcher.fetch(sig)
            if record is None:
                self.stats.not_found += 1
                return None

            if address not in record.account_keys:
                logger.debug("tx %s does not list %s, skipping", sig, address)
                return None

            native_delta, changes = balance_diff.diff(record, address)
            if native_delta == 0 and not changes:
                logger.debug("tx %s moved nothing for %s", sig, address)
                return None

            event = TransactionEvent(
                signature=sig,
                type=classify(native_delta, changes, self.registry),
                native_delta=native_delta,
                asset_changes=tuple(changes),
                timestamp=(
                    datetime.fromtimestamp(record.block_time, tz=timezone.utc)
                    if record.block_time is not None
                    else None
                ),
                slot=record.slot,
            )
            self.dispatcher.dispatch(event)
            self.stats.dispatched += 1
            return event
        except Exception:
            self.stats.errors += 1
            logger.exception("failed to process tx %s", sig)
            return None

    # -----------------------------
    # BALANCES
    # -----------------------------
    def _address_for_lookup(self, address: Optional[str]) -> str:
        address = address or self.session.tracked_address
        if not address:
            raise ValueError("no wallet address given and none being monitored")
        return address

    async def get_wallet_balance(self, address: Optional[str] = None) -> Decimal:
        """SOL balance of the wallet."""
        lamports = await self.transport.get_balance(self._address_for_lookup(address))
        return Decimal(lamports) / LAMPORTS_PER_SOL

    async def get_token_balances(self, address: Optional[str] = None) -> List[TokenHolding]:
        accounts = await self.transport.get_token_accounts_by_owner(self._address_for_lookup(address))
        out: List[TokenHolding] = []
        for acct in accounts:
            info = safe_get(acct, "account", "data", "parsed", "info", default={})
            mint = info.get("mint") if isinstance(info, dict) else None
            if not mint:
                continue
            amount = safe_get(info, "tokenAmount", default={})
            if not isinstance(amount, dict):
                amount = {}
            ui = amount.get("uiAmountString")
            if ui in (None, ""):
                ui = amount.get("uiAmount")
            out.append(TokenHolding(mint=mint, amount=to_decimal(ui), decimals=int(amount.get("decimals") or 0)))
        return out


def build_monitor(sink: Optional[EventSink] = None) -> WalletMonitor:
    transport = SolanaRpcClient(
        http_url=config.SOLANA_RPC_URL,
        ws_url=config.SOLANA_WS_URL,
        timeout=config.REQUEST_TIMEOUT,
        queue_max=config.SUB_QUEUE_MAX,
    )
    return WalletMonitor(
        transport,
        registry=build_registry(config.EXTRA_REFERENCE_MINTS),
        sink=sink,
        max_inflight=config.MAX_INFLIGHT,
    )


async def main() -> None:
    config.setup_logging()
    if not config.WATCH_WALLET:
        raise RuntimeError("Missing WATCH_WALLET.")

    monitor = build_monitor()
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # windows
            pass

    await monitor.start(config.WATCH_WALLET)
    try:
        await stop_event.wait()
    finally:
        logger.info("stopping monitor...")
        await monitor.stop()
        await monitor.wait_idle()
        await monitor.transport.close()


if __name__ == "__main__":
    asyncio.run(main())

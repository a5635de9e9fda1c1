from __future__ import annotations

import logging
from decimal import Decimal
from typing import Callable, List, Optional

from core.classifier import TradeDetail, extract_buy_detail, extract_sell_detail
from core.models import TransactionEvent, TransactionType
from core.registry import ReferenceAssetRegistry, short_mint
from links import explorer_tx_link

logger = logging.getLogger(__name__)

EventSink = Callable[[TransactionEvent], None]

BANNER = {
    TransactionType.BUY: "🟢",
    TransactionType.SELL: "🔴",
    TransactionType.WRAP: "🔄",
    TransactionType.UNWRAP: "🔄",
}


def _noop_sink(event: TransactionEvent) -> None:
    return None


def _plain(d: Decimal) -> str:
    # no exponent form: Decimal("1E-7") prints as 0.0000001
    return format(d, "f")


def _signed(d: Decimal) -> str:
    return f"+{_plain(d)}" if d > 0 else _plain(d)


class EventDispatcher:
    def __init__(self, registry: ReferenceAssetRegistry, sink: Optional[EventSink] = None):
        self.registry = registry
        self.sink: EventSink = sink or _noop_sink

    def set_sink(self, sink: Optional[EventSink]) -> None:
        """Swap the downstream handler. Not meant to be called while a dispatch is running."""
        self.sink = sink or _noop_sink

    def dispatch(self, event: TransactionEvent) -> None:
        logger.info("%s", self.render(event))
        # sink errors go up to the caller's per-notification handler
        self.sink(event)

    def render(self, event: TransactionEvent) -> str:
        lines: List[str] = []
        banner = BANNER.get(event.type)
        lines.append("=== Transaction detected ===")
        lines.append(f"Type: {event.type.value}" + (f" {banner}" if banner else ""))
        lines.append(f"Signature: {event.signature}")
        ts = event.timestamp.isoformat() if event.timestamp else "unknown"
        lines.append(f"Time: {ts}")
        lines.append(f"Slot: {event.slot}")
        lines.append(f"SOL change: {event.native_delta:+.6f} SOL")

        if event.asset_changes:
            lines.append("Token changes:")
            for c in event.asset_changes:
                tag = "[reference]" if c.mint in self.registry else "[other]"
                lines.append(f"  {tag} mint: {c.mint}")
                lines.append(f"  change: {_signed(c.delta)}")
                lines.append(f"  before: {_plain(c.pre_amount)} -> after: {_plain(c.post_amount)}")

        if event.type == TransactionType.BUY:
            lines.extend(self._detail_lines(
                "Buy detail:", extract_buy_detail(event.asset_changes, self.registry), "spent", "acquired"
            ))
        elif event.type == TransactionType.SELL:
            lines.extend(self._detail_lines(
                "Sell detail:", extract_sell_detail(event.asset_changes, self.registry), "sold", "received"
            ))

        link = explorer_tx_link(event.signature)
        if link:
            lines.append(f"Explorer: {link}")
        lines.append("============================")
        return "\n".join(lines)

    def _label(self, mint: str) -> str:
        if mint in self.registry:
            return self.registry.symbol(mint)
        return short_mint(mint)

    def _detail_lines(self, title: str, detail: TradeDetail, out_word: str, in_word: str) -> List[str]:
        lines = [title]
        for leg in detail.spent:
            lines.append(f"  {out_word}: {_plain(leg.amount)} {self._label(leg.mint)}")
        for leg in detail.acquired:
            lines.append(f"  {in_word}: {_plain(leg.amount)} {self._label(leg.mint)}")
        return lines

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import List, Sequence, Tuple

from core.models import AssetChange, TransactionType
from core.registry import ReferenceAssetRegistry


@dataclass(frozen=True)
class Buckets:
    reference_in: Tuple[AssetChange, ...]
    reference_out: Tuple[AssetChange, ...]
    other_in: Tuple[AssetChange, ...]
    other_out: Tuple[AssetChange, ...]


@dataclass(frozen=True)
class Leg:
    """One side of a buy/sell: amount is always positive."""
    mint: str
    amount: Decimal


@dataclass(frozen=True)
class TradeDetail:
    spent: Tuple[Leg, ...]
    acquired: Tuple[Leg, ...]


def bucketize(changes: Sequence[AssetChange], registry: ReferenceAssetRegistry) -> Buckets:
    ref_in: List[AssetChange] = []
    ref_out: List[AssetChange] = []
    other_in: List[AssetChange] = []
    other_out: List[AssetChange] = []

    for c in changes:
        is_ref = c.mint in registry
        if c.delta > 0:
            (ref_in if is_ref else other_in).append(c)
        elif c.delta < 0:
            (ref_out if is_ref else other_out).append(c)

    return Buckets(tuple(ref_in), tuple(ref_out), tuple(other_in), tuple(other_out))


def classify(
    native_delta: Decimal,
    changes: Sequence[AssetChange],
    registry: ReferenceAssetRegistry,
) -> TransactionType:
    """
    Rules are checked in order and the first match wins. BUY is checked
    before SELL, so a tx matching both patterns is a BUY.
    """
    if not changes:
        return TransactionType.SOL_RECEIVE if native_delta > 0 else TransactionType.SOL_SEND

    if len(changes) == 1 and registry.is_wrapped_native(changes[0].mint):
        return TransactionType.WRAP if changes[0].delta > 0 else TransactionType.UNWRAP

    b = bucketize(changes, registry)

    if b.reference_out and b.other_in:
        return TransactionType.BUY
    if b.other_out and b.reference_in:
        return TransactionType.SELL

    has_increase = any(c.delta > 0 for c in changes)
    has_decrease = any(c.delta < 0 for c in changes)

    if has_increase and not has_decrease:
        return TransactionType.RECEIVE
    if has_decrease and not has_increase:
        return TransactionType.SEND
    return TransactionType.COMPLEX


def _legs(changes: Sequence[AssetChange]) -> Tuple[Leg, ...]:
    return tuple(Leg(mint=c.mint, amount=abs(c.delta)) for c in changes)


def extract_buy_detail(changes: Sequence[AssetChange], registry: ReferenceAssetRegistry) -> TradeDetail:
    # reference mints paid out, other mints received
    b = bucketize(changes, registry)
    return TradeDetail(spent=_legs(b.reference_out), acquired=_legs(b.other_in))


def extract_sell_detail(changes: Sequence[AssetChange], registry: ReferenceAssetRegistry) -> TradeDetail:
    # other mints sold, reference mints received
    b = bucketize(changes, registry)
    return TradeDetail(spent=_legs(b.other_out), acquired=_legs(b.reference_in))

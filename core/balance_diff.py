from __future__ import annotations

import logging
from decimal import Decimal
from typing import Dict, Iterable, List, Tuple

from core.models import AssetChange, TokenBalance, TransactionRecord

logger = logging.getLogger(__name__)

LAMPORTS_PER_SOL = Decimal(1_000_000_000)

# ignore dust (UI units)
EPSILON = Decimal("0.000001")

ZERO = Decimal(0)


def diff(record: TransactionRecord, tracked_address: str) -> Tuple[Decimal, List[AssetChange]]:
    """
    Net effect of one transaction on the tracked wallet.

    Returns (native_delta_in_sol, asset_changes). When the wallet is not in the
    transaction's account list, or the balance arrays don't cover it, the result
    is (0, []).
    """
    native_delta = native_change(record, tracked_address)
    if native_delta is None:
        return ZERO, []
    return native_delta, token_changes(record, tracked_address)


def native_change(record: TransactionRecord, tracked_address: str):
    try:
        idx = record.account_keys.index(tracked_address)
    except ValueError:
        return None

    pre, post = record.pre_balances, record.post_balances
    if idx >= len(pre) or idx >= len(post):
        logger.debug("balance arrays too short for index %s (slot %s)", idx, record.slot)
        return None

    return (Decimal(post[idx]) - Decimal(pre[idx])) / LAMPORTS_PER_SOL


def _owned_amounts(balances: Iterable[TokenBalance], owner: str) -> Dict[str, Decimal]:
    out: Dict[str, Decimal] = {}
    for b in balances or ():
        if b.owner == owner:
            out[b.mint] = b.ui_amount
    return out


def token_changes(record: TransactionRecord, tracked_address: str) -> List[AssetChange]:
    pre_map = _owned_amounts(record.pre_token_balances, tracked_address)
    post_map = _owned_amounts(record.post_token_balances, tracked_address)

    changes: List[AssetChange] = []
    # token accounts can be opened or closed inside the tx, so either side may be missing
    for mint in set(pre_map) | set(post_map):
        pre_amount = pre_map.get(mint, ZERO)
        post_amount = post_map.get(mint, ZERO)
        delta = post_amount - pre_amount
        if abs(delta) > EPSILON:
            changes.append(
                AssetChange(mint=mint, pre_amount=pre_amount, post_amount=post_amount, delta=delta)
            )
    return changes

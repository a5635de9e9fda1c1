from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Tuple

from core.errors import MalformedRecord, NotFound
from core.models import TokenBalance, TransactionRecord

logger = logging.getLogger(__name__)

COMMITMENT = "confirmed"
# 0 = accept legacy and v0 messages; without it v0 txs come back as errors
MAX_SUPPORTED_TRANSACTION_VERSION = 0


class TransactionFetcher:
    """
    Looks up a transaction by signature and turns the RPC payload into a
    TransactionRecord. Missing or unreadable records come back as None;
    transport failures (TransportError) propagate to the caller.
    """

    def __init__(self, transport):
        self.transport = transport

    async def fetch(self, signature: str) -> Optional[TransactionRecord]:
        try:
            raw = await self.transport.get_transaction(
                signature,
                commitment=COMMITMENT,
                max_supported_transaction_version=MAX_SUPPORTED_TRANSACTION_VERSION,
            )
            if raw is None:
                raise NotFound(signature)
            return parse_transaction(raw)
        except NotFound:
            logger.debug("tx %s not found", signature)
            return None
        except MalformedRecord as e:
            logger.debug("tx %s malformed: %s", signature, e)
            return None


def to_decimal(v: Any) -> Decimal:
    if v is None or v == "":
        return Decimal(0)
    try:
        return Decimal(str(v))
    except InvalidOperation:
        return Decimal(0)


def safe_get(d, *path, default=None):
    cur = d
    for p in path:
        if not isinstance(cur, dict) or p not in cur:
            return default
        cur = cur[p]
    return cur if cur is not None else default


def _ui_amount(ui: Dict[str, Any]) -> Decimal:
    # uiAmountString keeps full precision, uiAmount is a float (or null)
    if not isinstance(ui, dict):
        return Decimal(0)
    if ui.get("uiAmountString") not in (None, ""):
        return to_decimal(ui.get("uiAmountString"))
    return to_decimal(ui.get("uiAmount"))


def _token_balances(items: Any) -> Tuple[TokenBalance, ...]:
    out: List[TokenBalance] = []
    for b in items or []:
        if not isinstance(b, dict):
            continue
        mint = b.get("mint")
        if not mint:
            continue
        out.append(
            TokenBalance(
                owner=b.get("owner") or "",
                mint=mint,
                ui_amount=_ui_amount(b.get("uiTokenAmount")),
            )
        )
    return tuple(out)


def _account_keys(message: Dict[str, Any], meta: Dict[str, Any]) -> Tuple[str, ...]:
    keys: List[str] = []
    for k in message.get("accountKeys") or []:
        # jsonParsed encoding gives {"pubkey": ..., "signer": ..., ...}
        if isinstance(k, dict):
            k = k.get("pubkey")
        keys.append(str(k))

    # v0 messages: balances are indexed over static keys + loaded writable + loaded readonly
    loaded = meta.get("loadedAddresses") or {}
    if isinstance(loaded, dict):
        keys.extend(str(a) for a in loaded.get("writable") or [])
        keys.extend(str(a) for a in loaded.get("readonly") or [])
    return tuple(keys)


def parse_transaction(raw: Dict[str, Any]) -> TransactionRecord:
    """Build a TransactionRecord from a getTransaction result (json or jsonParsed encoding)."""
    if not isinstance(raw, dict):
        raise MalformedRecord("result is not an object")

    meta = raw.get("meta")
    tx = raw.get("transaction")
    if not isinstance(meta, dict) or not isinstance(tx, dict):
        raise MalformedRecord("missing meta or transaction")

    message = tx.get("message")
    if not isinstance(message, dict):
        raise MalformedRecord("missing transaction.message")

    try:
        pre = tuple(int(x) for x in meta.get("preBalances") or [])
        post = tuple(int(x) for x in meta.get("postBalances") or [])
        slot = int(raw.get("slot") or 0)
        block_time = raw.get("blockTime")
        block_time = int(block_time) if block_time is not None else None
    except (TypeError, ValueError) as e:
        raise MalformedRecord(str(e)) from e

    return TransactionRecord(
        slot=slot,
        block_time=block_time,
        pre_balances=pre,
        post_balances=post,
        account_keys=_account_keys(message, meta),
        pre_token_balances=_token_balances(meta.get("preTokenBalances")),
        post_token_balances=_token_balances(meta.get("postTokenBalances")),
    )

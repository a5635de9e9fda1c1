from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional, Tuple


class TransactionType(str, Enum):
    SOL_RECEIVE = "SOL_RECEIVE"
    SOL_SEND = "SOL_SEND"
    WRAP = "WSOL_WRAP"
    UNWRAP = "WSOL_UNWRAP"
    BUY = "TOKEN_BUY"
    SELL = "TOKEN_SELL"
    RECEIVE = "TOKEN_RECEIVE"
    SEND = "TOKEN_SEND"
    COMPLEX = "COMPLEX_TRANSACTION"


@dataclass(frozen=True)
class RawLogNotification:
    """One logsNotification pushed by the RPC node."""
    signature: str
    lines: Tuple[str, ...]
    err: Any = None             # program error, if the tx failed
    slot: Optional[int] = None  # context slot of the notification


@dataclass(frozen=True)
class TokenBalance:
    owner: str                  # wallet owning the token account
    mint: str
    ui_amount: Decimal          # UI units (already decimals-adjusted)


@dataclass(frozen=True)
class TransactionRecord:
    slot: int
    block_time: Optional[int]   # unix seconds, None if the node doesn't know
    pre_balances: Tuple[int, ...]
    post_balances: Tuple[int, ...]
    account_keys: Tuple[str, ...]
    pre_token_balances: Tuple[TokenBalance, ...] = ()
    post_token_balances: Tuple[TokenBalance, ...] = ()


@dataclass(frozen=True)
class AssetChange:
    mint: str
    pre_amount: Decimal
    post_amount: Decimal
    delta: Decimal


@dataclass(frozen=True)
class TransactionEvent:
    signature: str
    type: TransactionType
    native_delta: Decimal       # SOL, signed
    asset_changes: Tuple[AssetChange, ...]
    timestamp: Optional[datetime]
    slot: int

    def to_dict(self) -> dict:
        return {
            "signature": self.signature,
            "type": self.type.value,
            "native_delta": str(self.native_delta),
            "asset_changes": [
                {
                    "mint": c.mint,
                    "pre_amount": str(c.pre_amount),
                    "post_amount": str(c.post_amount),
                    "delta": str(c.delta),
                }
                for c in self.asset_changes
            ],
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "slot": self.slot,
        }


@dataclass(frozen=True)
class TokenHolding:
    """A token account balance as reported by getTokenAccountsByOwner."""
    mint: str
    amount: Decimal
    decimals: int


@dataclass(frozen=True)
class MonitorSession:
    tracked_address: Optional[str] = None
    subscription_handle: Optional[Any] = None
    active: bool = False

    def __post_init__(self):
        if not self.active and self.subscription_handle is not None:
            raise ValueError("inactive session cannot hold a subscription handle")


@dataclass
class MonitorStats:
    received: int = 0
    filtered: int = 0
    not_found: int = 0
    dispatched: int = 0
    errors: int = 0

    def as_dict(self) -> dict:
        return {
            "received": self.received,
            "filtered": self.filtered,
            "not_found": self.not_found,
            "dispatched": self.dispatched,
            "errors": self.errors,
        }

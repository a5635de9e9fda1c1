import asyncio
import itertools
from decimal import Decimal

import pytest

from core.errors import TransportError
from core.models import AssetChange, RawLogNotification
from core.registry import ReferenceAssetRegistry

WALLET = "4EtAJ1p8RjqccEVhEhaYnEgQ6kA4JHR8oYqyLFwARUj6"
OTHER = "EdCNh8EzETJLFphW8yvdY7rDd8zBiyweiz8DU5gUUUka"
USDC = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
WSOL = "So11111111111111111111111111111111111111112"
MEME = "7GCihgDB8fe6KNjn2MYtkzZcRjQy3t9GHdC8uHYmW2hr"


class FakeTransport:
    """In-memory stand-in for SolanaRpcClient."""

    def __init__(self, transactions=None, fail_subscribe=False, fail_unsubscribe=False):
        self.transactions = dict(transactions or {})
        self.fail_subscribe = fail_subscribe
        self.fail_unsubscribe = fail_unsubscribe
        self.subscribe_calls = []
        self.unsubscribe_calls = []
        self.get_transaction_calls = []
        self.lamports = 0
        self.token_accounts = []
        self.closed = False
        self._ids = itertools.count(100)
        self._queues = {}

    async def subscribe_logs(self, mentions, commitment="confirmed"):
        self.subscribe_calls.append((mentions, commitment))
        if self.fail_subscribe:
            raise TransportError("subscribe refused")
        handle = next(self._ids)
        q = asyncio.Queue()
        self._queues[handle] = q
        return handle, self._stream(q)

    async def _stream(self, q):
        while True:
            item = await q.get()
            if item is None:
                return
            yield item

    def push(self, notification, handle=None):
        if handle is None:
            handle = list(self._queues)[-1]
        self._queues[handle].put_nowait(notification)

    def end_stream(self, handle=None):
        if handle is None:
            handle = list(self._queues)[-1]
        self._queues[handle].put_nowait(None)

    async def unsubscribe_logs(self, handle):
        self.unsubscribe_calls.append(handle)
        q = self._queues.get(handle)
        if q is not None:
            q.put_nowait(None)
        if self.fail_unsubscribe:
            raise TransportError("unsubscribe failed")
        return True

    async def get_transaction(self, signature, commitment="confirmed", max_supported_transaction_version=None):
        self.get_transaction_calls.append((signature, commitment, max_supported_transaction_version))
        tx = self.transactions.get(signature)
        if isinstance(tx, Exception):
            raise tx
        return tx

    async def get_balance(self, address):
        return self.lamports

    async def get_token_accounts_by_owner(self, owner):
        return self.token_accounts

    async def close(self):
        self.closed = True


def token_balance(owner, mint, ui, account_index=0, decimals=6):
    return {
        "accountIndex": account_index,
        "mint": mint,
        "owner": owner,
        "uiTokenAmount": {
            "uiAmount": float(ui) if ui is not None else None,
            "uiAmountString": str(ui) if ui is not None else None,
            "decimals": decimals,
            "amount": "0",
        },
    }


def raw_tx(
    account_keys,
    pre,
    post,
    pre_tokens=None,
    post_tokens=None,
    slot=250_000_000,
    block_time=1_700_000_000,
    loaded=None,
):
    """Shape of a getTransaction result with encoding=json."""
    meta = {
        "err": None,
        "fee": 5000,
        "preBalances": list(pre),
        "postBalances": list(post),
        "preTokenBalances": list(pre_tokens or []),
        "postTokenBalances": list(post_tokens or []),
    }
    if loaded is not None:
        meta["loadedAddresses"] = loaded
    return {
        "slot": slot,
        "blockTime": block_time,
        "meta": meta,
        "transaction": {
            "signatures": ["sig"],
            "message": {"accountKeys": list(account_keys), "instructions": []},
        },
        "version": 0,
    }


def swap_logs():
    return (
        "Program JUP6LkbZbjS1jKKwapdHNy74zcZ3tLUZoi5QNyVTaV4 invoke [1]",
        "Program log: Instruction: Route",
        "Program log: swap",
        "Program JUP6LkbZbjS1jKKwapdHNy74zcZ3tLUZoi5QNyVTaV4 success",
    )


def notification(sig, lines=None):
    return RawLogNotification(signature=sig, lines=tuple(swap_logs() if lines is None else lines))


def change(mint, delta, pre=0):
    pre = Decimal(str(pre))
    delta = Decimal(str(delta))
    return AssetChange(mint=mint, pre_amount=pre, post_amount=pre + delta, delta=delta)


async def settle(monitor, received, timeout=2.0):
    """Wait until the monitor has seen `received` notifications and finished them."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while monitor.stats.received < received and loop.time() < deadline:
        await asyncio.sleep(0.01)
    await monitor.wait_idle()


@pytest.fixture
def usdc_registry():
    return ReferenceAssetRegistry(symbols={"USDC": "USDC"}, wrapped_native="WRAPPED_NATIVE")

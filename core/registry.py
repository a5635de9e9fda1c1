from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

WSOL_MINT = "So11111111111111111111111111111111111111112"

# Stables / blue chips used as the pricing side of a buy or sell
DEFAULT_REFERENCE_MINTS: Mapping[str, str] = {
    "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v": "USDC",
    "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB": "USDT",
    WSOL_MINT: "WSOL",
    "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263": "BONK",
    "mSoLzYCxHdYgdzU16g5QSh3i5K3z3KZK7ytfqcJm7So": "mSOL",
    "J1toso1uCk3RLmjorhTtrVwY9HJ7X8V9yYac6Y7kGCPn": "jitoSOL",
}


@dataclass(frozen=True)
class ReferenceAssetRegistry:
    """
    Immutable set of reference mints plus the wrapped-native mint.
    Symbols live here too so the lookup table and the membership set
    can never disagree.
    """
    symbols: Mapping[str, str]
    wrapped_native: str = WSOL_MINT
    mints: frozenset = field(init=False)

    def __post_init__(self):
        # freeze the caller's mapping
        object.__setattr__(self, "symbols", MappingProxyType(dict(self.symbols)))
        object.__setattr__(self, "mints", frozenset(self.symbols))

    def __contains__(self, mint: object) -> bool:
        return mint in self.mints

    def __len__(self) -> int:
        return len(self.mints)

    def is_reference(self, mint: str) -> bool:
        return mint in self.mints

    def is_wrapped_native(self, mint: str) -> bool:
        return mint == self.wrapped_native

    def symbol(self, mint: str) -> str:
        sym = self.symbols.get(mint)
        if sym:
            return sym
        return short_mint(mint)


def short_mint(mint: str) -> str:
    return (mint or "")[:8] + "..."


def build_registry(
    extra_mints: Optional[Iterable[str]] = None,
    wrapped_native: str = WSOL_MINT,
) -> ReferenceAssetRegistry:
    """Default registry, optionally extended with extra reference mints (no symbol known)."""
    symbols = dict(DEFAULT_REFERENCE_MINTS)
    for m in extra_mints or ():
        m = (m or "").strip()
        if m and m not in symbols:
            symbols[m] = ""
    return ReferenceAssetRegistry(symbols=symbols, wrapped_native=wrapped_native)

from __future__ import annotations

SOLSCAN_TX = "https://solscan.io/tx/{sig}"


def explorer_tx_link(signature: str) -> str:
    if not signature:
        return ""
    return SOLSCAN_TX.format(sig=signature)

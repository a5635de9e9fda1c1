# config.py
import logging
import os

# ============================================================
# ENV / CONFIG
# ============================================================

SOLANA_RPC_URL = os.getenv("SOLANA_RPC_URL", "").strip() or "https://api.mainnet-beta.solana.com"


def _ws_from_http(url: str) -> str:
    if url.startswith("https://"):
        return "wss://" + url[len("https://"):]
    if url.startswith("http://"):
        return "ws://" + url[len("http://"):]
    return url


# Most providers serve websockets on the same host
SOLANA_WS_URL = os.getenv("SOLANA_WS_URL", "").strip() or _ws_from_http(SOLANA_RPC_URL)

# The one wallet we monitor. Empty = service comes up idle.
WATCH_WALLET = os.getenv("WATCH_WALLET", "").strip()

# Max notifications being fetched/classified at once
MAX_INFLIGHT = int(os.getenv("MAX_INFLIGHT", "16").strip() or "16")

REQUEST_TIMEOUT = float(os.getenv("REQUEST_TIMEOUT", "30").strip() or "30")

# Notifications buffered per subscription while the monitor is busy; overflow is dropped
SUB_QUEUE_MAX = int(os.getenv("SUB_QUEUE_MAX", "5000").strip() or "5000")

# Extra mints to treat as stable/blue-chip on top of the built-in list
EXTRA_REFERENCE_MINTS = [
    m for m in os.getenv("EXTRA_REFERENCE_MINTS", "").replace(" ", "").split(",") if m
]

RECENT_EVENTS_MAX = int(os.getenv("RECENT_EVENTS_MAX", "200").strip() or "200")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"

PORT = int(os.getenv("PORT", "8000").strip() or "8000")


def setup_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

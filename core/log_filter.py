from __future__ import annotations

from typing import Iterable

# Jupiter / Raydium / Orca log "swap", SPL token program logs "transfer"
MARKERS = ("swap", "transfer")


def passes(lines: Iterable[str]) -> bool:
    """Cheap pre-check on raw log lines; case-sensitive on purpose."""
    for line in lines or ():
        if not isinstance(line, str):
            continue
        if any(m in line for m in MARKERS):
            return True
    return False

import time
from typing import Iterable, Optional

REFERENCE_PREFIX = "CLR-"
SUFFIX_SPACE = 1_000_000


def generate_reference_number(existing_ids: Iterable[str] = (), now_ms: Optional[int] = None) -> str:
    """
    Build a CLR-###### reference from the last six digits of the clock,
    stepping forward past any suffix that is already taken.
    """
    taken = set(existing_ids)
    if now_ms is None:
        now_ms = time.time_ns() // 1_000_000
    suffix = now_ms % SUFFIX_SPACE
    for _ in range(SUFFIX_SPACE):
        candidate = f"{REFERENCE_PREFIX}{suffix:06d}"
        if candidate not in taken:
            return candidate
        suffix = (suffix + 1) % SUFFIX_SPACE
    raise RuntimeError("All reference numbers are in use")

import random
import time
from datetime import datetime, timezone
from typing import Optional


def epoch_millis(now: Optional[datetime] = None) -> int:
    """Milliseconds since the epoch for ``now`` (defaults to the current time)."""
    if now is None:
        return int(time.time() * 1000)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return int(now.timestamp() * 1000)


def generate_reference(prefix: str) -> str:
    """
    Build a human-readable reference such as ``SALE-1718000000000-042``.

    Used for sale numbers (SALE / RET) and locally generated transaction IDs
    (CASH / CARD / REFUND). Uniqueness is enforced by database constraints.
    """
    return f"{prefix}-{epoch_millis()}-{random.randint(0, 999):03d}"


"""
Identifier generator.

Every publish batch gets identifiers of the form ``message-<protocol>-<NNN>``
starting at a random offset, so consecutive runs do not reuse the identifiers
of a previous run. Some backends deduplicate on message id, and a reused id
would be silently dropped.
"""

import random
from typing import List, Optional

# Exclusive upper bound for the random starting offset.
RANDOM_OFFSET_MAX = 99


def message_id(protocol: str, index: int) -> str:
    return f"message-{protocol}-{index:03d}"


def message_ids(protocol: str, count: int, offset: int) -> List[str]:
    """Return count sequential identifiers beginning at offset."""
    return [message_id(protocol, i) for i in range(offset, offset + count)]


def random_offset(rng: Optional[random.Random] = None, offset_max: int = RANDOM_OFFSET_MAX) -> int:
    return (rng or random).randrange(offset_max)


def generate_message_ids(
    protocol: str,
    count: int,
    rng: Optional[random.Random] = None,
    offset_max: int = RANDOM_OFFSET_MAX,
) -> List[str]:
    """Pick a random offset and return count unique identifiers for protocol."""
    return message_ids(protocol, count, random_offset(rng, offset_max))

"""Splitting long records into bounded shards."""

from collections.abc import Sequence

from ..model import Turn


def shard_turns(turns: Sequence[Turn], max_chars: int, overlap_turns: int = 0) -> list[list[Turn]]:
    """Split ``turns`` into shards of at most ``max_chars`` characters.

    The last ``overlap_turns`` turns of a shard are repeated at the start of
    the next one for continuity. A turn longer than ``max_chars`` on its own
    becomes a shard by itself. Every turn appears in at least one shard.

    Args:
        turns: Turns in presentation order
        max_chars: Character budget per shard
        overlap_turns: Turns carried over between shards

    Returns:
        List of shards, empty when there are no turns
    """
    shards: list[list[Turn]] = []
    current: list[Turn] = []
    current_chars = 0
    fresh = 0

    def flush() -> None:
        nonlocal current, current_chars, fresh
        shards.append(current)
        carried = current[-overlap_turns:] if overlap_turns > 0 else []
        current = list(carried)
        current_chars = sum(len(t.text) for t in carried)
        fresh = 0

    for turn in turns:
        size = len(turn.text)
        if current_chars + size > max_chars:
            if fresh:
                flush()
            if current_chars + size > max_chars:
                # carried overlap alone does not leave room
                current = []
                current_chars = 0
        current.append(turn)
        current_chars += size
        fresh += 1

    if fresh:
        shards.append(current)

    return shards

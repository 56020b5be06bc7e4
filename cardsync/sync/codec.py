"""Splitting payloads into size-bounded chunks and joining them back.

Remote backends cap the length of a single value, so the serialized data
set is stored as an ordered run of chunks under deterministic keys:

    {base}_meta       metadata record (see metadata.py)
    {base}_batch_{i}  raw content of chunk i, 0 <= i < batches

The legacy layout used ``{base}_cardsBatch{i}`` for its chunks.
"""

from dataclasses import dataclass
from typing import Iterable

from ..errors import CorruptionError


@dataclass(frozen=True)
class Chunk:
    """A single slice of a payload."""

    index: int
    content: str


def meta_key(base: str) -> str:
    return f"{base}_meta"


def batch_key(base: str, index: int) -> str:
    return f"{base}_batch_{index}"


def legacy_batch_key(base: str, index: int) -> str:
    return f"{base}_cardsBatch{index}"


def split(payload: str, max_chunk_size: int) -> list[Chunk]:
    """Slice a payload into chunks of at most max_chunk_size characters.

    An empty payload yields no chunks; callers record it as a metadata
    record with zero batches.

    Args:
        payload: Serialized data set.
        max_chunk_size: Maximum characters per chunk (>= 1).

    Returns:
        Chunks ordered by index.
    """
    if max_chunk_size < 1:
        raise ValueError(f"max_chunk_size must be >= 1, got {max_chunk_size}")

    return [
        Chunk(index=i, content=payload[offset:offset + max_chunk_size])
        for i, offset in enumerate(range(0, len(payload), max_chunk_size))
    ]


def join(chunks: Iterable[Chunk], batch_count: int) -> str:
    """Reassemble a payload from its chunks.

    Args:
        chunks: Chunks in any order.
        batch_count: Number of chunks the metadata record announced.

    Returns:
        The original payload.

    Raises:
        CorruptionError: If a chunk in [0, batch_count) is missing or an
            unexpected index is present.
    """
    by_index: dict[int, str] = {}
    for chunk in chunks:
        if not 0 <= chunk.index < batch_count:
            raise CorruptionError(
                f"Chunk index {chunk.index} outside expected range 0..{batch_count - 1}"
            )
        by_index[chunk.index] = chunk.content

    missing = [i for i in range(batch_count) if i not in by_index]
    if missing:
        raise CorruptionError(f"Missing chunk {missing[0]} of {batch_count}")

    return "".join(by_index[i] for i in range(batch_count))

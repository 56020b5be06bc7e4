"""Remote metadata records.

Two shapes exist on the backend:

- ``MetadataV0``: the legacy record ``{"cardsBatches": n}`` with no revision.
- ``MetadataV1``: the current record ``{"version": 1, "revision": r, "batches": n}``.

The shapes are told apart by the presence of the ``revision`` key.
"""

import json
from dataclasses import dataclass
from typing import Any, Union

from ..errors import CorruptionError

METADATA_VERSION = 1


@dataclass(frozen=True)
class MetadataV0:
    """Legacy metadata: chunk count only."""

    legacy_batch_count: int


@dataclass(frozen=True)
class MetadataV1:
    """Current metadata: chunk layout of the payload at a given revision."""

    revision: int
    batches: int
    version: int = METADATA_VERSION

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "revision": self.revision,
            "batches": self.batches,
        }

    def encode(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))


RemoteMetadata = Union[MetadataV0, MetadataV1]


def _count(data: dict[str, Any], field: str) -> int:
    value = data.get(field)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise CorruptionError(f"Invalid metadata field {field!r}: {value!r}")
    return value


def decode_metadata(raw: str) -> RemoteMetadata:
    """Decode a metadata record read from the backend.

    Raises:
        CorruptionError: If the record is not JSON or matches neither shape.
    """
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise CorruptionError(f"Invalid metadata format: {e}") from e

    if not isinstance(data, dict):
        raise CorruptionError("Invalid metadata structure")

    if "revision" in data:
        return MetadataV1(
            revision=_count(data, "revision"),
            batches=_count(data, "batches"),
            version=data.get("version", METADATA_VERSION),
        )

    if "cardsBatches" in data:
        return MetadataV0(legacy_batch_count=_count(data, "cardsBatches"))

    raise CorruptionError("Invalid metadata structure")

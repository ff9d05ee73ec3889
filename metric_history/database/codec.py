"""Encoding of the ``str -> int`` mapping columns.

Mappings are stored as compact JSON objects with sorted keys so identical
mappings always produce identical bytes. Decoding is typed and fallible:
anything other than a JSON object of 64-bit integers raises
:class:`SnapshotDecodeError` instead of propagating a raw parser error.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Mapping, Optional

from ..schema import INT64_MAX, INT64_MIN, RowDecodeFailure, SnapshotDecodeError
from ..telemetry import decode_failures_total, get_logger
from .models import MAPPING_COLUMNS

_logger = get_logger(__name__)


def encode_mapping(values: Mapping[str, int]) -> str:
    return json.dumps(dict(values), sort_keys=True, separators=(",", ":"))


def decode_mapping(
    payload: Optional[str], column: str, snapshot_id: str = "",
) -> Dict[str, int]:
    """Decode one stored mapping column.

    Args:
        payload: Raw column value.
        column: Column name, reported in the error.
        snapshot_id: Row id, reported in the error.

    Returns:
        The decoded mapping.

    Raises:
        SnapshotDecodeError: If the payload is not a JSON object whose
            values are all 64-bit integers.
    """
    if payload is None:
        raise SnapshotDecodeError(column, "payload is NULL", snapshot_id)
    try:
        raw: Any = json.loads(payload)
    except (TypeError, ValueError) as exc:
        raise SnapshotDecodeError(column, f"invalid JSON: {exc}", snapshot_id) from exc

    if not isinstance(raw, dict):
        raise SnapshotDecodeError(
            column, f"expected an object, got {type(raw).__name__}", snapshot_id,
        )

    result: Dict[str, int] = {}
    for key, value in raw.items():
        # bool is an int subclass
        if isinstance(value, bool) or not isinstance(value, int):
            raise SnapshotDecodeError(
                column, f"value for {key!r} is not an integer", snapshot_id,
            )
        if not INT64_MIN <= value <= INT64_MAX:
            raise SnapshotDecodeError(
                column, f"value for {key!r} exceeds 64-bit range", snapshot_id,
            )
        result[key] = value
    return result


def decode_mapping_columns(row: Any, snapshot_id: str) -> Dict[str, Dict[str, int]]:
    """Decode every mapping column of a result row, keyed by column name."""
    return {
        column: decode_mapping(getattr(row, column), column, snapshot_id)
        for column in MAPPING_COLUMNS
    }


def record_failure(exc: SnapshotDecodeError) -> RowDecodeFailure:
    """Turn a decode error into a page entry and count it."""
    decode_failures_total.labels(column=exc.column).inc()
    _logger.warning("%s", exc)
    return RowDecodeFailure(
        snapshot_id=exc.snapshot_id, column=exc.column, reason=exc.reason,
    )

"""Keyset cursors for activity and notification pagination.

Uses keyset pagination (not OFFSET) so pages stay stable while new rows are
inserted. A cursor encodes the last seen (created_at, id) pair as base64 JSON.
"""

from __future__ import annotations

import base64
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import and_, or_

from showcase.errors import ValidationError


@dataclass(frozen=True)
class Cursor:
    created_at: datetime
    id: int


def encode_cursor(created_at: datetime, row_id: int) -> str:
    """Encode a cursor from a row's sort key."""
    payload = {"t": created_at.isoformat(), "id": int(row_id)}
    raw = json.dumps(payload, separators=(",", ":")).encode()
    return base64.urlsafe_b64encode(raw).decode().rstrip("=")


def decode_cursor(cursor: str) -> Cursor:
    """Decode a cursor string.

    Raises:
        ValidationError: If the cursor is malformed.
    """
    padded = cursor + "=" * (-len(cursor) % 4)
    try:
        data = json.loads(base64.urlsafe_b64decode(padded.encode()))
        created_at = datetime.fromisoformat(data["t"])
        row_id = int(data["id"])
    except Exception as e:
        msg = f"Invalid cursor: {e}"
        raise ValidationError(msg) from e

    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    return Cursor(created_at=created_at, id=row_id)


def before(created_col: Any, id_col: Any, cursor: Cursor) -> Any:  # noqa: ANN401
    """Rows strictly after the cursor in (created_at DESC, id DESC) order."""
    return or_(
        created_col < cursor.created_at,
        and_(created_col == cursor.created_at, id_col < cursor.id),
    )


def after(created_col: Any, id_col: Any, cursor: Cursor) -> Any:  # noqa: ANN401
    """Rows strictly newer than the cursor position."""
    return or_(
        created_col > cursor.created_at,
        and_(created_col == cursor.created_at, id_col > cursor.id),
    )

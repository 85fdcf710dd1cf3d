"""
Persisted selections for pointstream.

A selection is a named subset of the *authoritative* dataset: the client
sends point identities, the server resolves them to complete rows and binds
the rows under the selection name. Re-using a name overwrites the previous
binding. The store is shared by all sessions of one server.

Routes:
    GET /selections          -> summaries of all persisted selections
    GET /selections/{name}   -> rows of one selection
"""

import math
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd
from fastapi import APIRouter, HTTPException, Request

from shared.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/selections", tags=["selections"])


@dataclass
class SavedSelection:
    """Rows bound under a selection name."""

    name: str
    rows: pd.DataFrame
    saved_at: datetime = field(default_factory=datetime.now)
    session_id: Optional[str] = None

    @property
    def count(self) -> int:
        return len(self.rows)

    def summary(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "count": self.count,
            "saved_at": self.saved_at.isoformat(),
            "session_id": self.session_id,
        }


class SelectionStore:
    """Thread-safe name -> rows registry."""

    def __init__(self):
        self._selections: Dict[str, SavedSelection] = {}
        self._latest: Optional[str] = None
        self._lock = threading.Lock()

    def save(self, name: str, rows: pd.DataFrame, session_id: Optional[str] = None) -> SavedSelection:
        """Bind ``rows`` under ``name``, replacing any previous binding."""
        selection = SavedSelection(name=name, rows=rows, session_id=session_id)
        with self._lock:
            replaced = name in self._selections
            self._selections[name] = selection
            self._latest = name

        if replaced:
            logger.info("Selection '%s' overwritten with %d points", name, selection.count)
        else:
            logger.info("Selection saved as '%s' with %d points", name, selection.count)
        return selection

    def get(self, name: str) -> Optional[pd.DataFrame]:
        with self._lock:
            selection = self._selections.get(name)
        return selection.rows if selection else None

    def latest(self) -> Optional[SavedSelection]:
        """Return the most recently saved selection, if any."""
        with self._lock:
            return self._selections.get(self._latest) if self._latest else None

    def names(self) -> List[str]:
        with self._lock:
            return list(self._selections)

    def summaries(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [s.summary() for s in self._selections.values()]

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._selections

    def __len__(self) -> int:
        with self._lock:
            return len(self._selections)


def _sanitize_cell(value: Any) -> Any:
    """Convert NaN / Inf and numpy scalars for JSON serialization."""
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
        return None
    return value


def _frame_to_records(df: pd.DataFrame) -> List[Dict[str, Any]]:
    columns = [str(c) for c in df.columns]
    return [
        {col: _sanitize_cell(value) for col, value in zip(columns, row)}
        for row in df.itertuples(index=False, name=None)
    ]


def _get_store(request: Request) -> SelectionStore:
    return request.app.state.selection_store


@router.get("")
async def list_selections(request: Request):
    """List persisted selections."""
    return {"selections": _get_store(request).summaries()}


@router.get("/{name}")
async def get_selection(name: str, request: Request):
    """Return the rows of a persisted selection."""
    rows = _get_store(request).get(name)
    if rows is None:
        raise HTTPException(status_code=404, detail=f"Selection '{name}' not found")
    return {
        "name": name,
        "count": len(rows),
        "columns": [str(c) for c in rows.columns],
        "rows": _frame_to_records(rows),
    }

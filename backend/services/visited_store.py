"""
Persistence for the per-place visited flag, keyed by place identity.

The reconciler holds the flags in memory; a store is the durable copy.
"""
from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, Iterable, Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from domain.errors import PersistenceReadFailed, PersistenceWriteFailed
from repositories.visited import VisitedRepository

logger = logging.getLogger(__name__)


class VisitedStore(Protocol):
    def get(self, place_id: str) -> bool:
        ...

    def get_many(self, place_ids: Iterable[str]) -> Dict[str, bool]:
        ...

    def set(self, place_id: str, visited: bool) -> None:
        ...


class InMemoryVisitedStore:
    """Dict-backed store for tests and throwaway sessions."""

    def __init__(self, initial: Optional[Dict[str, bool]] = None):
        self._flags: Dict[str, bool] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, place_id: str) -> bool:
        with self._lock:
            return self._flags.get(place_id, False)

    def get_many(self, place_ids: Iterable[str]) -> Dict[str, bool]:
        with self._lock:
            return {pid: self._flags[pid] for pid in place_ids if pid in self._flags}

    def set(self, place_id: str, visited: bool) -> None:
        with self._lock:
            self._flags[place_id] = bool(visited)


class SqlVisitedStore:
    """Store backed by the `visited_places` table through VisitedRepository."""

    def __init__(self, session_factory: Callable[[], Session], repo: Optional[VisitedRepository] = None):
        self._session_factory = session_factory
        self._repo = repo or VisitedRepository()

    def get(self, place_id: str) -> bool:
        return self.get_many([place_id]).get(place_id, False)

    def get_many(self, place_ids: Iterable[str]) -> Dict[str, bool]:
        ids = list(place_ids)
        if not ids:
            return {}
        try:
            with self._session_factory() as session:
                return self._repo.get_flags(session, ids)
        except SQLAlchemyError as exc:
            logger.warning("[VISITED] read of %d flags failed: %s", len(ids), exc)
            raise PersistenceReadFailed("Could not read visited flags", {"count": len(ids)}) from exc

    def set(self, place_id: str, visited: bool) -> None:
        try:
            with self._session_factory() as session:
                self._repo.set_flag(session, place_id, visited)
        except SQLAlchemyError as exc:
            logger.warning("[VISITED] write %s=%s failed: %s", place_id, visited, exc)
            raise PersistenceWriteFailed(place_id, visited) from exc


_default_visited_store: Optional[SqlVisitedStore] = None


def get_default_visited_store() -> SqlVisitedStore:
    global _default_visited_store
    if _default_visited_store is None:
        from db import SessionLocal, init_db

        init_db()
        _default_visited_store = SqlVisitedStore(SessionLocal)
    return _default_visited_store

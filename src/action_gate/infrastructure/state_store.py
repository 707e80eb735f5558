"""State store: Protocol + in-memory and file-backed implementations with revision checks."""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, Protocol, runtime_checkable
from urllib.parse import quote
from uuid import uuid4

logger = logging.getLogger(__name__)


class ConflictError(Exception):
    """Guarded write rejected: the document changed since it was read."""

    def __init__(self, user_id: str, expected: str | None, actual: str | None) -> None:
        super().__init__(f"revision conflict for {user_id}: expected {expected}, found {actual}")
        self.user_id = user_id
        self.expected = expected
        self.actual = actual


@runtime_checkable
class StateStore(Protocol):
    """Protocol for one document per user, with optimistic concurrency."""

    async def read(self, user_id: str) -> tuple[dict[str, Any], bool]:
        """Return (document, found). Missing documents yield ({}, False)."""
        ...

    async def write(self, user_id: str, revision: str | None, document: dict[str, Any]) -> str:
        """
        Replace the document if its revision equals `revision` (None: must not exist yet).
        Return the new revision or raise ConflictError.
        """
        ...


def next_revision(current: str | None) -> str:
    """`<generation>-<random hex>`; generation counts successful writes."""
    generation = 0
    if current:
        try:
            generation = int(current.split("-", 1)[0])
        except ValueError:
            generation = 0
    return f"{generation + 1}-{uuid4().hex}"


class InMemoryStateStore:
    """In-memory dict store. Suitable for single process; no persistence."""

    def __init__(self) -> None:
        self._docs: dict[str, dict[str, Any]] = {}

    async def read(self, user_id: str) -> tuple[dict[str, Any], bool]:
        doc = self._docs.get(user_id)
        if doc is None:
            return {}, False
        return copy.deepcopy(doc), True

    async def write(self, user_id: str, revision: str | None, document: dict[str, Any]) -> str:
        # No await between check and replace: atomic on the event loop.
        current = self._docs.get(user_id, {}).get("_rev")
        if current != revision:
            raise ConflictError(user_id, revision, current)
        new_rev = next_revision(current)
        stored = copy.deepcopy(document)
        stored["_rev"] = new_rev
        self._docs[user_id] = stored
        return new_rev


class FileStateStore:
    """One JSON file per user under a directory; replace-on-write keeps files whole."""

    def __init__(self, directory: str | Path) -> None:
        self._dir = Path(directory)
        self._dir.mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()

    def _path(self, user_id: str) -> Path:
        return self._dir / f"{quote(user_id, safe='')}.json"

    def _load(self, user_id: str) -> dict[str, Any] | None:
        path = self._path(user_id)
        if not path.exists():
            return None
        with open(path, encoding="utf-8") as f:
            return json.load(f)

    async def read(self, user_id: str) -> tuple[dict[str, Any], bool]:
        doc = await asyncio.to_thread(self._load, user_id)
        if doc is None:
            return {}, False
        return doc, True

    def _replace(self, user_id: str, stored: dict[str, Any]) -> None:
        path = self._path(user_id)
        tmp = path.with_suffix(f".{uuid4().hex}.tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(stored, f)
        os.replace(tmp, path)

    async def write(self, user_id: str, revision: str | None, document: dict[str, Any]) -> str:
        # Disk work runs in a worker thread; check and replace stay under the lock.
        async with self._lock:
            existing = await asyncio.to_thread(self._load, user_id)
            current = existing.get("_rev") if existing else None
            if current != revision:
                raise ConflictError(user_id, revision, current)
            new_rev = next_revision(current)
            stored = dict(document)
            stored["_rev"] = new_rev
            await asyncio.to_thread(self._replace, user_id, stored)
            return new_rev


def open_store(location: str | None) -> StateStore:
    """"memory" (or empty) for the in-memory store, otherwise a directory path."""
    if not location or location == "memory":
        logger.info("Using in-memory state store")
        return InMemoryStateStore()
    logger.info("Using file state store at %s", location)
    return FileStateStore(location)

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from dataclasses import replace
from typing import Awaitable, Callable, Dict, List, Optional

from .config import CACHE_PATH, is_ward
from .errors import BudgetFlowError, FetchFailure, PersistenceFailure, UnknownEntityError
from .extract import graph_from_payload, parse_citations
from .types import BudgetResult
from .utils import iso_from_epoch_ms, now_iso
from .validate import validate_graph

logger = logging.getLogger(__name__)


Fetcher = Callable[[str], Awaitable[BudgetResult]]


def _result_row(result: BudgetResult) -> Dict[str, object]:
    return result.to_dict()


def _result_from_row(row: Dict[str, object]) -> BudgetResult:
    # Records written by the browser build nest the graph under "data" and
    # carry "sources" plus an epoch-millisecond "timestamp".
    data = row.get("data") if isinstance(row.get("data"), dict) else row
    citations = row.get("citations", row.get("sources"))
    fetched_at = row.get("fetchedAt") or row.get("fetched_at")
    if not fetched_at and row.get("timestamp") is not None:
        fetched_at = iso_from_epoch_ms(row.get("timestamp"))

    graph = graph_from_payload(data.get("nodes"), data.get("links"))
    explanation = row.get("explanation", "")
    return BudgetResult(
        graph=validate_graph(graph).graph,
        explanation=explanation if isinstance(explanation, str) else "",
        citations=parse_citations(citations if isinstance(citations, list) else []),
        fetched_at=str(fetched_at or ""),
    )


class BudgetCache:
    """Per-ward budget results, persisted as one JSON blob after every change.

    There is no expiry: an entry stays valid until `get_or_fetch(..., force=True)`
    replaces it. Concurrent fetches for the same ward share one in-flight task.
    """

    def __init__(self, path: str = CACHE_PATH, autoload: bool = True):
        self.path = path
        self._entries: Dict[str, BudgetResult] = {}
        self._inflight: Dict[str, asyncio.Future] = {}
        self.persist_error: Optional[PersistenceFailure] = None
        if autoload:
            self.load()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def keys(self) -> List[str]:
        return list(self._entries.keys())

    def load(self) -> int:
        self._entries = {}
        if not os.path.exists(self.path):
            return 0
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError, RecursionError) as exc:
            logger.error("Budget cache at %s is unreadable, starting empty: %s", self.path, exc)
            return 0
        if not isinstance(data, dict):
            logger.error("Budget cache at %s is not a JSON object, starting empty", self.path)
            return 0

        for key, row in data.items():
            if not is_ward(key):
                logger.warning("Skipping cached entry for unknown ward %r", key)
                continue
            if not isinstance(row, dict):
                logger.warning("Skipping malformed cached entry for %s", key)
                continue
            try:
                self._entries[key] = _result_from_row(row)
            except (AttributeError, TypeError, ValueError) as exc:
                logger.warning("Skipping malformed cached entry for %s: %s", key, exc)
        logger.info("Loaded %d cached wards from %s", len(self._entries), self.path)
        return len(self._entries)

    def flush(self) -> None:
        payload = {key: _result_row(result) for key, result in self._entries.items()}
        directory = os.path.dirname(self.path) or "."
        tmp_path = ""
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix=".budget_cache.", suffix=".json", dir=directory)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, ensure_ascii=False, indent=2)
            os.replace(tmp_path, self.path)
        except (OSError, TypeError, ValueError) as exc:
            if tmp_path and os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise PersistenceFailure(f"Could not write budget cache: {exc}", path=self.path) from exc

    def get(self, key: str) -> Optional[BudgetResult]:
        return self._entries.get(key)

    def snapshot(self) -> Dict[str, BudgetResult]:
        return dict(self._entries)

    def _store(self, key: str, result: BudgetResult) -> BudgetResult:
        stamped = replace(result, fetched_at=now_iso())
        self._entries[key] = stamped
        try:
            self.flush()
            self.persist_error = None
        except PersistenceFailure as exc:
            # The in-memory entry stands; only durability is lost.
            logger.error("%s", exc)
            self.persist_error = exc
        return stamped

    async def _run_fetch(self, key: str, fetcher: Fetcher) -> BudgetResult:
        try:
            result = await fetcher(key)
        except BudgetFlowError:
            raise
        except Exception as exc:
            raise FetchFailure(f"Fetching {key} failed: {exc}", key=key) from exc
        if not isinstance(result, BudgetResult):
            raise FetchFailure(f"Fetcher for {key} returned {type(result).__name__}", key=key)
        return self._store(key, result)

    async def get_or_fetch(self, key: str, fetcher: Fetcher, force: bool = False) -> BudgetResult:
        if not is_ward(key):
            raise UnknownEntityError(key)
        if not force:
            cached = self._entries.get(key)
            if cached is not None:
                return cached

        pending = self._inflight.get(key)
        if pending is not None:
            return await asyncio.shield(pending)

        task = asyncio.ensure_future(self._run_fetch(key, fetcher))
        self._inflight[key] = task
        task.add_done_callback(lambda t: self._forget_inflight(key, t))
        return await asyncio.shield(task)

    def _forget_inflight(self, key: str, task: asyncio.Future) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled() and task.exception() is not None:
            logger.warning("Fetch for %s failed: %s", key, task.exception())

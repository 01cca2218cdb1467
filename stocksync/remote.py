"""Async access to the blocking remote store.

Each source gets its own single worker thread, so a hung source cannot starve
the others, and every call is bounded by a timeout.  A timeout or an adapter
failure surfaces as :class:`~stocksync.errors.RemoteUnavailable`; the call
itself is not cancelled and finishes in the background.
"""
from __future__ import annotations

import asyncio
import functools
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional, Sequence

from google.auth.exceptions import GoogleAuthError
from httplib2 import HttpLib2Error

from stocksync.errors import RemoteUnavailable
from stocksync.sheets_client import SheetsClientError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15.0
FULL_SHEET_RANGE = "A1:ZZ"


class RemoteGateway:
    """Run remote store operations off the event loop with a timeout."""

    def __init__(
        self,
        store,
        *,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._store = store
        self._timeout = timeout
        self._executors: Dict[str, ThreadPoolExecutor] = {}

    @property
    def store(self):
        return self._store

    @property
    def timeout(self) -> float:
        return self._timeout

    async def read_range(self, source: str, range_spec: str) -> List[List[str]]:
        return await self._call(source, "read_range", self._store.read_range, source, range_spec)

    async def read_sheet(self, source: str) -> List[List[str]]:
        """Read every populated row of the source, header included."""

        return await self.read_range(source, FULL_SHEET_RANGE)

    async def write_range(self, source: str, range_spec: str, rows: Sequence[Sequence[Any]]) -> None:
        await self._call(source, "write_range", self._store.write_range, source, range_spec, rows)

    async def append_rows(self, source: str, rows: Sequence[Sequence[Any]]) -> Optional[int]:
        return await self._call(source, "append_rows", self._store.append_rows, source, rows)

    async def delete_rows(self, source: str, sheet_id: int, start_index: int, end_index: int) -> None:
        await self._call(
            source, "delete_rows", self._store.delete_rows, source, sheet_id, start_index, end_index
        )

    async def get_metadata(self, source: str) -> Dict[str, Any]:
        return await self._call(source, "get_metadata", self._store.get_metadata, source)

    def close(self) -> None:
        for executor in self._executors.values():
            executor.shutdown(wait=False)
        self._executors.clear()

    def _executor_for(self, source: str) -> ThreadPoolExecutor:
        executor = self._executors.get(source)
        if executor is None:
            executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"stocksync-{source}")
            self._executors[source] = executor
        return executor

    async def _call(self, source: str, description: str, func: Callable[..., Any], *args: Any) -> Any:
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(self._executor_for(source), functools.partial(func, *args))
        try:
            return await asyncio.wait_for(future, self._timeout)
        except asyncio.TimeoutError as exc:
            logger.warning("Remote %s for %s timed out after %.1fs", description, source, self._timeout)
            raise RemoteUnavailable(
                f"{description} timed out after {self._timeout:.1f}s", source=source
            ) from exc
        except (SheetsClientError, GoogleAuthError, HttpLib2Error, OSError) as exc:
            logger.warning("Remote %s for %s failed: %s", description, source, exc)
            raise RemoteUnavailable(f"{description} failed: {exc}", source=source) from exc


__all__ = ["DEFAULT_TIMEOUT", "FULL_SHEET_RANGE", "RemoteGateway"]

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, replace
from typing import Any, List, Optional, Set

from .backend_client import RequestSender
from .connectivity import ConnectivityMonitor
from .database import QUEUE_SCHEMA_SQL, apply_schema

logger = logging.getLogger(__name__)

MAX_RETRIES = 5
DRAIN_INTERVAL_SECONDS = 60.0


class ExhaustedRetries(Exception):
    """A queued request was dropped after using up its retry budget."""

    def __init__(self, request: "QueuedRequest", last_error: Exception):
        super().__init__(
            f"Request {request.id} ({request.method} {request.target}) dropped after "
            f"{request.retry_count} attempts: {last_error}"
        )
        self.request = request
        self.last_error = last_error


@dataclass(frozen=True)
class QueuedRequest:
    id: str
    target: str
    method: str
    body: Any
    timestamp: float
    retry_count: int = 0


class QueueRepository:
    """Durable storage for the queue's ordered entry list."""

    def __init__(self, connection_factory):
        self._connection_factory = connection_factory
        with self._connection() as conn:
            apply_schema(conn, QUEUE_SCHEMA_SQL)

    @contextmanager
    def _connection(self):
        conn = self._connection_factory()
        try:
            yield conn
        finally:
            conn.close()

    def load_all(self) -> List[QueuedRequest]:
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT id, target, method, body_json, timestamp, retry_count
                FROM queued_requests
                ORDER BY position ASC;
                """
            ).fetchall()
        return [
            QueuedRequest(
                id=row["id"],
                target=row["target"],
                method=row["method"],
                body=json.loads(row["body_json"]) if row["body_json"] is not None else None,
                timestamp=row["timestamp"],
                retry_count=row["retry_count"],
            )
            for row in rows
        ]

    def replace_all(self, entries: List[QueuedRequest]) -> None:
        with self._connection() as conn:
            try:
                conn.execute("DELETE FROM queued_requests;")
                conn.executemany(
                    """
                    INSERT INTO queued_requests (
                        id, position, target, method, body_json, timestamp, retry_count
                    ) VALUES (?, ?, ?, ?, ?, ?, ?);
                    """,
                    [
                        (
                            entry.id,
                            position,
                            entry.target,
                            entry.method,
                            json.dumps(entry.body),
                            entry.timestamp,
                            entry.retry_count,
                        )
                        for position, entry in enumerate(entries)
                    ],
                )
                conn.commit()
            except Exception:
                conn.rollback()
                raise


class ResilientWriteQueue:
    """At-least-once delivery buffer for outbound side-effect writes."""

    def __init__(
        self,
        sender: RequestSender,
        repository: QueueRepository,
        connectivity: ConnectivityMonitor,
        max_retries: int = MAX_RETRIES,
        drain_interval: float = DRAIN_INTERVAL_SECONDS,
    ):
        self._sender = sender
        self._repo = repository
        self._connectivity = connectivity
        self._max_retries = max_retries
        self._drain_interval = drain_interval
        self._entries: List[QueuedRequest] = repository.load_all()
        self._lock = asyncio.Lock()
        self._draining = False
        self._timer: Optional[asyncio.Task] = None
        self._drains: Set[asyncio.Task] = set()
        connectivity.on_restored(self.process_queue)
        if self._entries:
            logger.info("Loaded %d pending queued requests", len(self._entries))

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def entries(self) -> List[QueuedRequest]:
        return list(self._entries)

    @property
    def is_draining(self) -> bool:
        return self._draining

    async def enqueue(self, target: str, method: str, payload: Any) -> QueuedRequest:
        request = QueuedRequest(
            id=f"req-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}",
            target=target,
            method=method.upper(),
            body=payload,
            timestamp=time.time(),
        )
        self._entries.append(request)
        self._repo.replace_all(self._entries)
        logger.info("Queued %s %s as %s", request.method, request.target, request.id)

        if self._connectivity.online:
            self._schedule_drain()
        return request

    def _schedule_drain(self) -> None:
        task = asyncio.create_task(self.process_queue())
        self._drains.add(task)
        task.add_done_callback(self._drain_finished)

    def _drain_finished(self, task: asyncio.Task) -> None:
        self._drains.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Background queue drain failed: %s", task.exception())

    async def flush(self) -> None:
        """Wait for scheduled drains, then drain whatever is still queued."""
        if self._drains:
            await asyncio.gather(*self._drains, return_exceptions=True)
        await self.process_queue()

    async def process_queue(self) -> None:
        if self._draining or not self._entries or not self._connectivity.online:
            return

        async with self._lock:
            self._draining = True
            try:
                batch = list(self._entries)
                remaining: List[QueuedRequest] = []
                for request in batch:
                    try:
                        await self._sender.send(request.target, request.method, request.body)
                    except Exception as exc:
                        failed = replace(request, retry_count=request.retry_count + 1)
                        if failed.retry_count < self._max_retries:
                            logger.warning(
                                "Queued request %s failed (attempt %d/%d): %s",
                                failed.id,
                                failed.retry_count,
                                self._max_retries,
                                exc,
                            )
                            remaining.append(failed)
                        else:
                            logger.error("%s", ExhaustedRetries(failed, exc))
                        continue
                    logger.info("Delivered queued request %s", request.id)

                # Requests enqueued during the drain sit behind the batch.
                self._entries = remaining + self._entries[len(batch):]
                self._repo.replace_all(self._entries)
            finally:
                self._draining = False

    def start(self) -> None:
        if self._timer is None or self._timer.done():
            self._timer = asyncio.create_task(self._run_timer())

    async def stop(self) -> None:
        # Entries are only removed once a drain finishes, so a cancelled drain
        # leaves them queued for the next start.
        tasks = list(self._drains)
        if self._timer is not None:
            tasks.append(self._timer)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._drains.clear()
        self._timer = None

    async def _run_timer(self) -> None:
        while True:
            await asyncio.sleep(self._drain_interval)
            try:
                await self._connectivity.check()
                await self.process_queue()
            except Exception:
                logger.exception("Periodic queue drain failed")

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Protocol

import aiohttp

logger = logging.getLogger("vaultcore.audit.sink")


class AuditSink(Protocol):
    async def emit(self, event: Dict[str, Any]) -> None:
        """Emit an audit event to the sink."""
        ...


# Outcomes that should stand out in an operator's log stream
_WARN_OUTCOMES = {"denied", "integrity_failure", "error"}


class StdOutSink:
    """Writes each event as one sorted JSON line to a stdlib logger.

    Denials, integrity failures and errors are logged at WARNING so they
    survive an INFO-filtered handler; everything else is INFO.
    """

    def __init__(self, logger_name: str = "vaultcore.audit"):
        self._logger = logging.getLogger(logger_name)

    async def emit(self, event: Dict[str, Any]) -> None:
        level = logging.WARNING if event.get("outcome") in _WARN_OUTCOMES else logging.INFO
        self._logger.log(level, json.dumps(event, sort_keys=True))


class HttpSink:
    """Ships events to an audit service from a background queue.

    ``emit`` never blocks on the network; when the queue is full the newest
    event is dropped and a warning is logged.
    """

    def __init__(self, service_url: str, api_key: Optional[str] = None, max_queue_size: int = 1000):
        self.url = f"{service_url.rstrip('/')}/events"
        self.api_key = api_key
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=max_queue_size)
        self.dropped = 0
        self._worker_task: Optional[asyncio.Task] = None

    def _start_worker(self):
        if self._worker_task is None or self._worker_task.done():
            self._worker_task = asyncio.get_running_loop().create_task(self._worker())

    async def _worker(self):
        timeout = aiohttp.ClientTimeout(total=5.0)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            while True:
                event = await self.queue.get()
                try:
                    headers = {"Content-Type": "application/json"}
                    if self.api_key:
                        headers["Authorization"] = f"Bearer {self.api_key}"

                    async with session.post(self.url, json=event, headers=headers) as resp:
                        if resp.status >= 400:
                            logger.error(f"Audit Service Error: {resp.status}")
                except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                    logger.error(f"Audit Sink Transmission Error: {e}")
                finally:
                    self.queue.task_done()

    async def emit(self, event: Dict[str, Any]) -> None:
        self._start_worker()

        if self.queue.full():
            self.dropped += 1
            logger.warning("audit_queue_dropped_total: queue full, dropping newest event")
            return

        self.queue.put_nowait(event)

    async def close(self) -> None:
        """Stop the worker; events still queued are discarded."""
        if self._worker_task is not None:
            self._worker_task.cancel()
            try:
                await self._worker_task
            except asyncio.CancelledError:
                pass
            self._worker_task = None


class CompositeSink:
    """Fans each event out to every sink concurrently.

    A failing sink is logged and counted in ``failures``; it never stops
    delivery to the others and never propagates to the caller.
    """

    def __init__(self, sinks: List[AuditSink]):
        self.sinks = sinks
        self.failures = 0

    async def emit(self, event: Dict[str, Any]) -> None:
        results = await asyncio.gather(
            *(sink.emit(event) for sink in self.sinks),
            return_exceptions=True,
        )
        for sink, result in zip(self.sinks, results):
            if isinstance(result, Exception):
                self.failures += 1
                logger.error(
                    f"Audit sink {type(sink).__name__} failed for event {event.get('event_id')}: {result}"
                )

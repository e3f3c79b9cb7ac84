"""
Gaze Hit Queue
Batches gaze hits on content blocks and hands them to an async sink.
Best-effort telemetry: on overflow the oldest hits go, on sink failure the
batch is dropped.
"""

import asyncio
import logging
import threading
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional, Set, Tuple

from .transform import GazePoint

logger = logging.getLogger(__name__)

BatchSink = Callable[[dict], Awaitable]


def hit_from_point(
    point: GazePoint,
    block_id: str,
    viewport: Optional[Tuple[int, int]] = None,
    **extra,
) -> dict:
    """Build a gaze hit for block_id from a calibrated point"""
    hit = {
        'block_id': block_id,
        'x': point.x,
        'y': point.y,
        'confidence': point.confidence,
        'ts': datetime.fromtimestamp(point.timestamp_ms / 1000, tz=timezone.utc).isoformat(),
        'source': point.source,
    }
    if viewport is not None:
        hit['screen_w'], hit['screen_h'] = viewport
    hit.update(extra)
    return hit


class GazeQueue:
    """
    Bounded gaze hit buffer flushed on an interval or when a batch fills.

    Only one flush runs at a time. `enabled` and `context` are read at
    flush time, so toggling tracking off discards whatever is pending.
    """

    def __init__(
        self,
        sink: BatchSink,
        flush_interval_s: float = 1.0,
        max_batch: int = 200,
        max_queue_size: int = 2000,
        enabled: Optional[Callable[[], bool]] = None,
        context: Optional[Callable[[], dict]] = None,
    ):
        self.sink = sink
        self.flush_interval_s = flush_interval_s
        self.max_batch = max_batch
        self.max_queue_size = max_queue_size
        self.enabled = enabled
        self.context = context

        self._hits: List[dict] = []
        self._lock = threading.Lock()
        self._in_flight = False
        self._task: Optional[asyncio.Task] = None
        self._flush_tasks: Set[asyncio.Task] = set()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

        self.sent = 0
        self.dropped = 0

    def __len__(self):
        with self._lock:
            return len(self._hits)

    def start(self):
        if self._task is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._task = self._loop.create_task(self._run())

    async def stop(self, flush: bool = True):
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if self._flush_tasks:
            await asyncio.gather(*self._flush_tasks, return_exceptions=True)
        if flush:
            await self.flush()

    def enqueue(self, hit: dict):
        """Add a hit; safe to call from the engine thread."""
        if not hit or not hit.get('block_id'):
            return
        if self.enabled is not None and not self.enabled():
            return

        with self._lock:
            overflow = len(self._hits) - self.max_queue_size + 1
            if overflow > 0:
                del self._hits[:overflow]
                self.dropped += overflow
            self._hits.append(hit)
            full = len(self._hits) >= self.max_batch

        if full and self._loop is not None and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._spawn_flush)

    async def flush(self) -> int:
        """
        Send up to one batch.

        Returns:
            Number of hits the sink accepted.
        """
        if self._in_flight:
            return 0
        if self.enabled is not None and not self.enabled():
            with self._lock:
                self._hits.clear()
            return 0

        with self._lock:
            batch = self._hits[:self.max_batch]
            del self._hits[:len(batch)]
        if not batch:
            return 0

        self._in_flight = True
        try:
            ctx = self.context() if self.context else {}
            await self.sink({
                'path_id': ctx.get('path_id'),
                'node_id': ctx.get('node_id'),
                'hits': batch,
            })
            self.sent += len(batch)
            return len(batch)
        except Exception as e:
            self.dropped += len(batch)
            logger.warning(f"Dropped {len(batch)} gaze hits: {e}")
            return 0
        finally:
            self._in_flight = False

    def _spawn_flush(self):
        task = asyncio.get_running_loop().create_task(self.flush())
        self._flush_tasks.add(task)
        task.add_done_callback(self._flush_tasks.discard)

    async def _run(self):
        while True:
            await asyncio.sleep(self.flush_interval_s)
            await self.flush()

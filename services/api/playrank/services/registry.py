"""In-process registry of live workflow handles.

Handles are what the HTTP layer hands back to clients:
- insertion: one candidate into an existing list (SessionHandle)
- batch: SequentialInsertionWorkflow (BatchHandle)
- rebuild: RebuildWorkflow (RebuildHandle)

Every handle carries its own asyncio.Lock, so at most one step per handle
is in flight. Idle handles are dropped after SESSION_TTL_SECONDS; their
state is ephemeral and nothing of it is persisted.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
import logging
import time
from typing import Literal
from uuid import uuid4

from playrank.services.errors import HandleNotFound
from playrank.services.rebuild import RebuildWorkflow
from playrank.services.sequential_insertion import SequentialInsertionWorkflow
from playrank.settings import get_settings

logger = logging.getLogger("uvicorn.error")

HandleKind = Literal["insertion", "batch", "rebuild"]
Workflow = SequentialInsertionWorkflow | RebuildWorkflow


@dataclass
class Handle:
    handle_id: str
    kind: HandleKind
    user_id: str
    workflow: Workflow
    touched_at: float
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class HandleRegistry:
    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._handles: dict[str, Handle] = {}

    def __len__(self) -> int:
        return len(self._handles)

    def register(self, kind: HandleKind, user_id: str, workflow: Workflow) -> Handle:
        self.prune()
        handle = Handle(
            handle_id=uuid4().hex,
            kind=kind,
            user_id=user_id,
            workflow=workflow,
            touched_at=self._clock(),
        )
        self._handles[handle.handle_id] = handle
        logger.info(f"[registry] open {kind} handle={handle.handle_id} user={user_id}")
        return handle

    def get(self, handle_id: str, kind: HandleKind | None = None) -> Handle:
        """Look up a live handle.

        Raises:
            HandleNotFound: unknown, expired, or of another kind.
        """
        self.prune()
        handle = self._handles.get(handle_id)
        if handle is None or (kind is not None and handle.kind != kind):
            raise HandleNotFound(detail={"handle": handle_id})
        return handle

    def discard(self, handle_id: str) -> None:
        self._handles.pop(handle_id, None)

    def prune(self) -> int:
        """Drop handles idle for longer than the TTL. Returns how many."""
        cutoff = self._clock() - self.ttl_seconds
        expired = [h for h in self._handles.values() if h.touched_at < cutoff and not h.lock.locked()]
        for handle in expired:
            if handle.workflow.save_in_flight:
                logger.warning(
                    f"[registry] expiring {handle.kind} handle={handle.handle_id} user={handle.user_id} "
                    "with a half-applied save; list may need repair"
                )
            del self._handles[handle.handle_id]
        return len(expired)

    @asynccontextmanager
    async def step(self, handle_id: str, kind: HandleKind | None = None) -> AsyncGenerator[Handle, None]:
        """Hold the handle's lock for one operation."""
        handle = self.get(handle_id, kind)
        async with handle.lock:
            try:
                yield handle
            finally:
                handle.touched_at = self._clock()


# Registry instance (process-local)
_registry: HandleRegistry | None = None


def get_registry() -> HandleRegistry:
    global _registry
    if _registry is None:
        _registry = HandleRegistry(ttl_seconds=get_settings().session_ttl_seconds)
    return _registry

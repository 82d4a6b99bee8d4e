"""Global execution gate: one lifecycle cycle (or manual operation) at a time."""
import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import structlog

from mediatier.core.errors import GateReentryError

logger = structlog.get_logger(__name__)


class ExecutionGate:
    """Mutual exclusion for every read-modify-write over tracked items.

    `hold(owner)` is the only acquisition path; the gate is released on every
    exit, including cancellation. Asking for the gate again from the owner that
    currently holds it raises GateReentryError instead of deadlocking.
    """

    def __init__(self):
        self._lock = asyncio.Lock()
        self._holder: Optional[str] = None

    @property
    def holder(self) -> Optional[str]:
        return self._holder

    def locked(self) -> bool:
        return self._lock.locked()

    @asynccontextmanager
    async def hold(self, owner: str) -> AsyncIterator[None]:
        if self._holder is not None and self._holder == owner:
            raise GateReentryError(f"Execution gate already held by '{owner}'")

        # Annulé pendant l'attente: Lock.acquire ne laisse pas le verrou pris
        await self._lock.acquire()
        self._holder = owner
        logger.debug("gate_acquired", owner=owner)
        try:
            yield
        finally:
            self._holder = None
            self._lock.release()
            logger.debug("gate_released", owner=owner)


"""Scheduler des boucles de cycle de vie (scan, téléchargements, lectures, transitions)."""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from mediatier.config import SchedulerConfig
from mediatier.core.gate import ExecutionGate
from mediatier.core.models import LifecycleSettings

logger = logging.getLogger(__name__)

DOWNLOAD_MONITOR = "download_monitor"
LIBRARY_SCANNER = "library_scanner"
WATCH_MONITOR = "watch_monitor"
TRANSITION_SCHEDULER = "transition_scheduler"

LoopBody = Callable[[LifecycleSettings], Awaitable[object]]


class LifecycleScheduler:
    """Quatre boucles indépendantes, chacune exécutée sous la porte d'exécution globale.

    Une exception dans un cycle est journalisée et la boucle continue au tick
    suivant; seule l'annulation arrête une boucle.
    """

    def __init__(
        self,
        gate: ExecutionGate,
        settings_loader: Callable[[], LifecycleSettings],
        scheduler_config: Optional[SchedulerConfig] = None,
    ):
        self.gate = gate
        self.settings_loader = settings_loader
        self.config = scheduler_config or SchedulerConfig()
        self.scheduler: Optional[AsyncIOScheduler] = None
        self._bodies: Dict[str, LoopBody] = {}
        self._tasks: Dict[str, asyncio.Task] = {}

    def register(self, name: str, body: LoopBody) -> None:
        self._bodies[name] = body

    def _intervals(self) -> Dict[str, int]:
        return {
            DOWNLOAD_MONITOR: self.config.download_monitor_seconds,
            LIBRARY_SCANNER: self.config.library_scanner_seconds,
            WATCH_MONITOR: self.config.watch_monitor_seconds,
            TRANSITION_SCHEDULER: self.config.transition_scheduler_seconds,
        }

    def start(self) -> None:
        """Démarre le scheduler si configuré."""
        if not self.config.enabled:
            logger.info("Scheduler is disabled")
            return

        self.scheduler = AsyncIOScheduler(job_defaults={"coalesce": True, "max_instances": 1})
        now = datetime.now()
        intervals = self._intervals()
        for name in self._bodies:
            first_run = now
            if name == LIBRARY_SCANNER:
                first_run = now + timedelta(seconds=self.config.library_scanner_startup_delay_seconds)
            self.scheduler.add_job(
                self.run_loop,
                trigger=IntervalTrigger(seconds=intervals.get(name, 60)),
                args=[name],
                id=name,
                next_run_time=first_run,
                replace_existing=True,
            )
        self.scheduler.start()
        logger.info("Scheduler started with loops: %s", ", ".join(self._bodies))

    async def run_loop(self, name: str) -> None:
        """Un cycle d'une boucle."""
        self._tasks[name] = asyncio.current_task()
        try:
            async with self.gate.hold(name):
                settings = self.settings_loader()
                result = await self._bodies[name](settings)
                logger.debug("Loop %s completed: %s", name, result)
        except asyncio.CancelledError:
            logger.info("Loop %s cancelled", name)
            raise
        except Exception:
            logger.exception("Error in %s cycle", name)
        finally:
            self._tasks.pop(name, None)

    def cancel_loop(self, name: str) -> bool:
        """Arrête une boucle: plus de ticks, et le cycle en cours est annulé."""
        found = False
        if self.scheduler and self.scheduler.get_job(name):
            self.scheduler.remove_job(name)
            found = True
        task = self._tasks.get(name)
        if task and not task.done():
            task.cancel()
            found = True
        if found:
            logger.info("Loop %s stopped", name)
        return found

    async def shutdown(self) -> None:
        """Arrête le scheduler."""
        if self.scheduler:
            self.scheduler.shutdown(wait=False)
            self.scheduler = None
        tasks = [t for t in self._tasks.values() if not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Scheduler stopped")

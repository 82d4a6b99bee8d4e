"""Wiring of services, lifecycle components and scheduler for the running app."""
import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from sqlalchemy.orm import Session

from mediatier.config import Config
from mediatier.core.download_monitor import DownloadMonitor
from mediatier.core.gate import ExecutionGate
from mediatier.core.kinds import KindRegistry
from mediatier.core.models import LifecycleSettings
from mediatier.core.notifications import NotificationHub
from mediatier.core.scanner import LibraryScanner
from mediatier.core.transitions import TransitionService
from mediatier.core.watch_monitor import WatchStatusMonitor
from mediatier.db.database import get_db_sync
from mediatier.db.models import LibraryConfig
from mediatier.scheduler import (
    LifecycleScheduler, DOWNLOAD_MONITOR, LIBRARY_SCANNER, WATCH_MONITOR, TRANSITION_SCHEDULER,
)
from mediatier.services.download_clients import DownloadClientService
from mediatier.services.jellyfin import JellyfinService
from mediatier.services.jellyseerr import JellyseerrService
from mediatier.services.radarr import RadarrService
from mediatier.services.sonarr import SonarrService

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    config: Config
    gate: ExecutionGate
    notifier: NotificationHub
    registry: KindRegistry
    scanner: LibraryScanner
    download_monitor: DownloadMonitor
    watch_monitor: WatchStatusMonitor
    transitions: TransitionService
    scheduler: LifecycleScheduler
    download_clients: DownloadClientService
    session_factory: Callable[[], Session] = field(default=get_db_sync)
    sonarr: Optional[SonarrService] = None
    radarr: Optional[RadarrService] = None
    jellyfin: Optional[JellyfinService] = None
    jellyseerr: Optional[JellyseerrService] = None

    def load_settings(self) -> LifecycleSettings:
        """Lit la configuration bibliothèque (créée au premier démarrage depuis `lifecycle:`)."""
        db = self.session_factory()
        try:
            row = LibraryConfig.get_or_create(db, self.config.lifecycle.to_row_defaults())
            return row.to_settings()
        finally:
            db.close()


def build_runtime(
    config: Config,
    session_factory: Callable[[], Session] = get_db_sync,
    gate: Optional[ExecutionGate] = None,
    notifier: Optional[NotificationHub] = None,
) -> Runtime:
    sonarr = SonarrService(config.sonarr) if config.sonarr else None
    radarr = RadarrService(config.radarr) if config.radarr else None
    jellyfin = JellyfinService(config.jellyfin) if config.jellyfin else None
    jellyseerr = JellyseerrService(config.jellyseerr) if config.jellyseerr else None
    gate = gate or ExecutionGate()
    notifier = notifier or NotificationHub()
    registry = KindRegistry(sonarr=sonarr, radarr=radarr)

    for name, service in (("Sonarr", sonarr), ("Radarr", radarr), ("Jellyfin", jellyfin), ("Jellyseerr", jellyseerr)):
        if service is None:
            logger.warning("%s is not configured", name)

    scanner = LibraryScanner(registry, session_factory=session_factory, notifier=notifier)
    download_monitor = DownloadMonitor(registry, session_factory=session_factory, notifier=notifier)
    watch_monitor = WatchStatusMonitor(jellyfin, session_factory=session_factory, notifier=notifier)
    transitions = TransitionService(
        registry, jellyseerr=jellyseerr, session_factory=session_factory, notifier=notifier
    )

    runtime = Runtime(
        config=config,
        gate=gate,
        notifier=notifier,
        registry=registry,
        scanner=scanner,
        download_monitor=download_monitor,
        watch_monitor=watch_monitor,
        transitions=transitions,
        scheduler=None,
        download_clients=DownloadClientService(config.download_clients),
        session_factory=session_factory,
        sonarr=sonarr,
        radarr=radarr,
        jellyfin=jellyfin,
        jellyseerr=jellyseerr,
    )

    scheduler = LifecycleScheduler(gate, runtime.load_settings, config.scheduler)
    scheduler.register(DOWNLOAD_MONITOR, download_monitor.check_downloads)
    scheduler.register(LIBRARY_SCANNER, scanner.scan_library)
    scheduler.register(WATCH_MONITOR, lambda settings: watch_monitor.update_watch_status())
    scheduler.register(TRANSITION_SCHEDULER, transitions.check_and_process_transitions)
    runtime.scheduler = scheduler
    return runtime


# Global runtime (initialized in main.py lifespan)
_runtime: Optional[Runtime] = None


def init_runtime(config: Config, **kwargs) -> Runtime:
    global _runtime
    _runtime = build_runtime(config, **kwargs)
    return _runtime


def get_runtime() -> Runtime:
    """FastAPI dependency: the running app's components."""
    if _runtime is None:
        raise RuntimeError("Runtime not initialized. Call init_runtime() first.")
    return _runtime


def set_runtime(runtime: Optional[Runtime]) -> None:
    global _runtime
    _runtime = runtime

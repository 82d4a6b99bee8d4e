"""Core business models."""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, List


class MediaType(str, Enum):
    MOVIE = "Movie"
    SERIES = "Series"
    ANIME = "Anime"

    @property
    def is_episodic(self) -> bool:
        return self in (MediaType.SERIES, MediaType.ANIME)


class FileState(str, Enum):
    SYMLINK = "Symlink"  # placeholder, streamed on demand
    MKV = "Mkv"  # local file
    DOWNLOADING = "Downloading"  # transition in progress
    PENDING_SYMLINK = "PendingSymlink"  # waiting for the request service to recreate the placeholder


class LibraryMode(str, Enum):
    NEW_CONTENT_ONLY = "NewContentOnly"
    TRACK_EXISTING = "TrackExisting"
    FULL_AUTOMATION = "FullAutomation"


class TimeUnit(str, Enum):
    MINUTES = "Minutes"
    HOURS = "Hours"
    DAYS = "Days"
    WEEKS = "Weeks"
    MONTHS = "Months"

    def to_timedelta(self, value: int) -> timedelta:
        """Convertit une valeur de seuil en durée (mois = 30 jours)."""
        if self is TimeUnit.MINUTES:
            return timedelta(minutes=value)
        if self is TimeUnit.HOURS:
            return timedelta(hours=value)
        if self is TimeUnit.WEEKS:
            return timedelta(days=value * 7)
        if self is TimeUnit.MONTHS:
            return timedelta(days=value * 30)
        return timedelta(days=value)


class DownloadClientType(str, Enum):
    QBITTORRENT = "qbittorrent"
    TRANSMISSION = "transmission"
    SABNZBD = "sabnzbd"


class TransitionOutcome(str, Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"  # precondition not met, nothing was touched


@dataclass(frozen=True)
class LifecycleSettings:
    """Snapshot of the library configuration, read once per cycle."""
    library_mode: LibraryMode
    symlink_to_mkv: timedelta
    mkv_to_symlink: timedelta
    media_library_path: str
    pending_symlink_timeout: Optional[timedelta] = None

    @property
    def automation_enabled(self) -> bool:
        return self.library_mode == LibraryMode.FULL_AUTOMATION


@dataclass
class CatalogEntry:
    """Série (Sonarr) ou film (Radarr) connu du service de catalogue."""
    id: int
    title: str
    path: Optional[str] = None
    tvdb_id: Optional[int] = None
    tmdb_id: Optional[int] = None


@dataclass
class ArrFileRecord:
    """Fichier épisode/film tel que vu par Sonarr/Radarr."""
    id: int
    catalog_id: int
    path: str
    size: int = 0
    season_number: Optional[int] = None
    quality: str = ""


@dataclass
class QueueEntry:
    """Entrée de la file de téléchargement active d'un service *arr."""
    download_id: str
    catalog_id: Optional[int]
    title: str
    status: str = ""
    size: int = 0
    size_left: int = 0
    error_message: Optional[str] = None
    episode_id: Optional[int] = None

    @property
    def progress(self) -> float:
        if not self.size:
            return 0.0
        return round((self.size - self.size_left) / self.size * 100, 1)


@dataclass
class DownloadQueueItem:
    """Élément actif d'un client de téléchargement (qBittorrent, Transmission, SABnzbd)."""
    id: str
    name: str
    size: int
    size_remaining: int
    progress: float
    status: str
    client_type: DownloadClientType
    error_message: Optional[str] = None


@dataclass
class MediaFileInfo:
    """Fichier média découvert sur disque."""
    path: str
    name: str
    is_symlink: bool
    size: int = 0
    symlink_target: Optional[str] = None
    last_modified: Optional[datetime] = None


@dataclass
class TransitionCandidate:
    media_item_id: int
    title: str
    current_state: FileState
    target_state: FileState
    days_until_transition: int
    transition_date: Optional[datetime] = None


@dataclass
class SweepResult:
    to_mkv: int = 0
    to_symlink: int = 0
    skipped: int = 0
    failed: int = 0
    mode_disabled: bool = False

    @property
    def total(self) -> int:
        return self.to_mkv + self.to_symlink


@dataclass
class ScanResult:
    new: int = 0
    updated: int = 0
    missing: int = 0
    errors: int = 0
    new_paths: List[str] = field(default_factory=list)

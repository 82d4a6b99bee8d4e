"""SQLAlchemy models for database."""
from datetime import datetime
from typing import Optional

from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text, ForeignKey, BigInteger, Enum as SAEnum
from sqlalchemy.orm import declarative_base, relationship, Session

from mediatier.core.models import FileState, MediaType, LibraryMode, TimeUnit, LifecycleSettings
from mediatier.utils.timeutil import utcnow

Base = declarative_base()


def _enum_column(enum_cls, **kwargs) -> Column:
    # Stocké en texte ("Symlink", "Mkv", ...), pas en enum natif SQLite
    return Column(
        SAEnum(enum_cls, native_enum=False, values_callable=lambda e: [m.value for m in e], length=20),
        **kwargs,
    )


class MediaItem(Base):
    """Fichier média suivi, dans sa représentation courante."""
    __tablename__ = "media_items"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False)
    type = _enum_column(MediaType, nullable=False)
    current_state = _enum_column(FileState, nullable=False)
    file_path = Column(String, nullable=False, unique=True, index=True)
    file_size = Column(BigInteger, nullable=True)

    # Liaisons vers les services externes
    jellyfin_id = Column(String, nullable=True, index=True)
    sonarr_id = Column(Integer, nullable=True)
    tvdb_id = Column(Integer, nullable=True)
    radarr_id = Column(Integer, nullable=True)
    tmdb_id = Column(Integer, nullable=True, index=True)
    sonarr_file_id = Column(Integer, nullable=True)
    radarr_file_id = Column(Integer, nullable=True)
    jellyseerr_request_id = Column(Integer, nullable=True)

    season_number = Column(Integer, nullable=True)
    episode_number = Column(Integer, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    last_watched_at = Column(DateTime, nullable=True)
    state_changed_at = Column(DateTime, nullable=True)
    is_excluded = Column(Boolean, default=False, nullable=False)

    activity_logs = relationship(
        "ActivityLog",
        back_populates="media_item",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def set_state(self, new_state: FileState, now: Optional[datetime] = None) -> FileState:
        """Change l'état et l'horodatage de changement ensemble. Retourne l'état précédent."""
        previous = self.current_state
        self.current_state = new_state
        self.state_changed_at = now or utcnow()
        return previous

    def record_watch(self, watched_at: Optional[datetime]) -> bool:
        """Enregistre une lecture; ignore les valeurs nulles ou plus anciennes."""
        if watched_at is None:
            return False
        if self.last_watched_at is not None and watched_at <= self.last_watched_at:
            return False
        self.last_watched_at = watched_at
        return True

    def move_to(self, path: str) -> None:
        """Suit le fichier vers un nouveau chemin; l'id Jellyfin est résolu à nouveau."""
        self.file_path = path
        self.jellyfin_id = None

    @property
    def symlink_reference_time(self) -> datetime:
        return self.last_watched_at or self.created_at

    @property
    def mkv_reference_time(self) -> datetime:
        return self.last_watched_at or self.state_changed_at or self.created_at

    @property
    def is_linked(self) -> bool:
        return self.sonarr_id is not None or self.radarr_id is not None

    def __repr__(self) -> str:
        return f"<MediaItem {self.id} {self.current_state} {self.file_path!r}>"


class ActivityLog(Base):
    """Journal append-only des décisions et transitions."""
    __tablename__ = "activity_logs"

    id = Column(Integer, primary_key=True, index=True)
    media_item_id = Column(
        Integer, ForeignKey("media_items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    action = Column(String, nullable=False)
    from_state = _enum_column(FileState, nullable=True)
    to_state = _enum_column(FileState, nullable=True)
    details = Column(Text, nullable=True)
    timestamp = Column(DateTime, default=utcnow, nullable=False, index=True)

    media_item = relationship("MediaItem", back_populates="activity_logs")


class LibraryConfig(Base):
    """Configuration de la bibliothèque (ligne unique id=1)."""
    __tablename__ = "library_config"

    id = Column(Integer, primary_key=True)
    library_mode = _enum_column(LibraryMode, nullable=False, default=LibraryMode.NEW_CONTENT_ONLY)
    symlink_to_mkv_value = Column(Integer, nullable=False, default=7)
    symlink_to_mkv_unit = _enum_column(TimeUnit, nullable=False, default=TimeUnit.DAYS)
    mkv_to_symlink_value = Column(Integer, nullable=False, default=30)
    mkv_to_symlink_unit = _enum_column(TimeUnit, nullable=False, default=TimeUnit.DAYS)
    media_library_path = Column(String, nullable=False, default="/media")
    pending_symlink_timeout_hours = Column(Integer, nullable=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    SINGLETON_ID = 1

    @classmethod
    def get_or_create(cls, db: Session, defaults: Optional[dict] = None) -> "LibraryConfig":
        """Retourne la ligne de configuration, créée au premier démarrage à partir de `defaults`."""
        row = db.get(cls, cls.SINGLETON_ID)
        if row is None:
            row = cls(id=cls.SINGLETON_ID, **(defaults or {}))
            db.add(row)
            db.commit()
            db.refresh(row)
        return row

    def to_settings(self) -> LifecycleSettings:
        timeout = None
        if self.pending_symlink_timeout_hours:
            timeout = TimeUnit.HOURS.to_timedelta(self.pending_symlink_timeout_hours)
        return LifecycleSettings(
            library_mode=LibraryMode(self.library_mode),
            symlink_to_mkv=TimeUnit(self.symlink_to_mkv_unit).to_timedelta(self.symlink_to_mkv_value),
            mkv_to_symlink=TimeUnit(self.mkv_to_symlink_unit).to_timedelta(self.mkv_to_symlink_value),
            media_library_path=self.media_library_path,
            pending_symlink_timeout=timeout,
        )

"""Test fixtures: in-memory SQLite database, temporary media library and fake services."""

from datetime import datetime, timedelta
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.orm import sessionmaker

from mediatier.core.kinds import KindRegistry
from mediatier.core.models import FileState, LibraryMode, LifecycleSettings, MediaType
from mediatier.db.database import create_db_engine
from mediatier.db.models import Base, MediaItem

NOW = datetime(2024, 6, 1, 12, 0, 0)


class FixedClock:
    """Horloge contrôlable par les tests."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def engine():
    engine = create_db_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def library(tmp_path) -> Path:
    root = tmp_path / "media"
    for sub in ("movies", "tv", "anime"):
        (root / sub).mkdir(parents=True)
    return root


@pytest.fixture
def make_settings(library):
    def _make(
        mode: LibraryMode = LibraryMode.FULL_AUTOMATION,
        symlink_to_mkv: timedelta = timedelta(days=7),
        mkv_to_symlink: timedelta = timedelta(days=30),
        pending_symlink_timeout=None,
    ) -> LifecycleSettings:
        return LifecycleSettings(
            library_mode=mode,
            symlink_to_mkv=symlink_to_mkv,
            mkv_to_symlink=mkv_to_symlink,
            media_library_path=str(library),
            pending_symlink_timeout=pending_symlink_timeout,
        )
    return _make


@pytest.fixture
def settings(make_settings) -> LifecycleSettings:
    return make_settings()


def write_file(path: Path, content: str = "data") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    return path


@pytest.fixture
def make_item(db, clock):
    """Insère un MediaItem (valeurs par défaut: film Mkv non lié)."""
    def _make(file_path, **kwargs) -> MediaItem:
        state = kwargs.pop("current_state", FileState.MKV)
        item = MediaItem(
            title=kwargs.pop("title", Path(str(file_path)).stem),
            type=kwargs.pop("type", MediaType.MOVIE),
            current_state=state,
            file_path=str(file_path),
            created_at=kwargs.pop("created_at", clock.now),
            state_changed_at=kwargs.pop("state_changed_at", None),
            is_excluded=kwargs.pop("is_excluded", False),
            **kwargs,
        )
        db.add(item)
        db.commit()
        db.refresh(item)
        return item
    return _make


@pytest.fixture
def sonarr():
    service = AsyncMock()
    service.get_series.return_value = []
    service.get_queue.return_value = []
    service.get_episode_ids.return_value = []
    service.delete_episode_file_by_path.return_value = False
    return service


@pytest.fixture
def radarr():
    service = AsyncMock()
    service.get_movies.return_value = []
    service.get_queue.return_value = []
    service.delete_movie_file_by_path.return_value = False
    return service


@pytest.fixture
def jellyseerr():
    service = AsyncMock()
    service.create_request.return_value = 501
    return service


@pytest.fixture
def registry(sonarr, radarr):
    return KindRegistry(sonarr=sonarr, radarr=radarr)


@pytest.fixture
def notifier():
    return MagicMock()

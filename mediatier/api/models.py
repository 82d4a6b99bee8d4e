"""Pydantic models for API requests/responses."""
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Optional, List, Dict, Any
from datetime import datetime

from mediatier.core.models import FileState, MediaType, TransitionOutcome


class MediaItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    type: MediaType
    current_state: FileState
    file_path: str
    file_size: Optional[int] = None
    jellyfin_id: Optional[str] = None
    sonarr_id: Optional[int] = None
    radarr_id: Optional[int] = None
    tvdb_id: Optional[int] = None
    tmdb_id: Optional[int] = None
    jellyseerr_request_id: Optional[int] = None
    season_number: Optional[int] = None
    episode_number: Optional[int] = None
    created_at: datetime
    last_watched_at: Optional[datetime] = None
    state_changed_at: Optional[datetime] = None
    is_excluded: bool


class ExclusionRequest(BaseModel):
    is_excluded: bool


class TransitionResponse(BaseModel):
    media_item_id: int
    outcome: TransitionOutcome
    current_state: FileState


class SweepResponse(BaseModel):
    to_mkv: int
    to_symlink: int
    skipped: int
    failed: int
    mode_disabled: bool


class UpcomingTransitionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    media_item_id: int
    title: str
    current_state: FileState
    target_state: FileState
    days_until_transition: int
    transition_date: Optional[datetime] = None


class ActivityLogResponse(BaseModel):
    id: int
    media_item_id: int
    media_title: Optional[str] = None
    action: str
    from_state: Optional[FileState] = None
    to_state: Optional[FileState] = None
    details: Optional[str] = None
    timestamp: datetime


class QueueItemResponse(BaseModel):
    download_id: str
    title: str
    status: str
    progress: float
    size: int
    size_left: int
    error_message: Optional[str] = None
    source: str
    media_item_id: Optional[int] = None


class QueueResponse(BaseModel):
    items: List[QueueItemResponse]
    errors: Dict[str, str] = Field(default_factory=dict)


class DownloadClientQueueItemResponse(BaseModel):
    id: str
    name: str
    size: int
    size_remaining: int
    progress: float
    status: str
    error_message: Optional[str] = None


class DownloadClientQueueResponse(BaseModel):
    client_name: str
    client_type: str
    items: List[DownloadClientQueueItemResponse]


class DiagnosticsResponse(BaseModel):
    jellyfin: Dict[str, Any]
    jellyseerr: Dict[str, Any]
    radarr: Dict[str, Any]
    sonarr: Dict[str, Any]
    download_clients: Dict[str, Dict[str, Any]]


# Webhooks (camelCase, champs inconnus ignorés)

class _WebhookModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class ArrFilePayload(_WebhookModel):
    id: Optional[int] = None
    path: Optional[str] = None
    size: Optional[int] = None


class SonarrSeriesPayload(_WebhookModel):
    id: Optional[int] = None
    title: Optional[str] = None
    tvdb_id: Optional[int] = None


class SonarrEpisodePayload(_WebhookModel):
    id: Optional[int] = None
    season_number: Optional[int] = None
    episode_number: Optional[int] = None


class SonarrWebhookPayload(_WebhookModel):
    event_type: str = ""
    series: Optional[SonarrSeriesPayload] = None
    episode: Optional[SonarrEpisodePayload] = None
    episodes: List[SonarrEpisodePayload] = Field(default_factory=list)
    episode_file: Optional[ArrFilePayload] = None

    @property
    def first_episode(self) -> Optional[SonarrEpisodePayload]:
        if self.episode is not None:
            return self.episode
        return self.episodes[0] if self.episodes else None


class RadarrMoviePayload(_WebhookModel):
    id: Optional[int] = None
    title: Optional[str] = None
    tmdb_id: Optional[int] = None


class RadarrWebhookPayload(_WebhookModel):
    event_type: str = ""
    movie: Optional[RadarrMoviePayload] = None
    movie_file: Optional[ArrFilePayload] = None


class JellyseerrMediaPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    tmdb_id: Optional[int] = Field(default=None, alias="tmdbId")
    tvdb_id: Optional[int] = Field(default=None, alias="tvdbId")
    media_type: Optional[str] = None


class JellyseerrWebhookPayload(BaseModel):
    """Accepte `eventType` ou `notification_type` (modèle de webhook par défaut de Jellyseerr)."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    event_type: Optional[str] = Field(default=None, alias="eventType")
    notification_type: Optional[str] = None
    media: Optional[JellyseerrMediaPayload] = None

    @property
    def event(self) -> str:
        return (self.event_type or self.notification_type or "").lower()

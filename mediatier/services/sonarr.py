"""Sonarr API client."""
import logging
import httpx
from typing import List, Dict, Any, Optional

from mediatier.config import get_config, SonarrConfig
from mediatier.core.errors import ServiceError
from mediatier.core.filesystem import path_key, file_name
from mediatier.core.models import CatalogEntry, ArrFileRecord, QueueEntry
from mediatier.utils.http_client import RobustHTTPClient, get_http_client, connect_test_timeout

logger = logging.getLogger(__name__)

SERVICE_NAME = "sonarr"


class SonarrService:
    """Service pour interagir avec Sonarr."""

    def __init__(self, config: Optional[SonarrConfig] = None, http_client: Optional[RobustHTTPClient] = None):
        if config is None:
            config = get_config().sonarr
        if not config:
            raise ValueError("Sonarr configuration not found")
        self.base_url = config.url.rstrip("/")
        self.api_key = config.api_key
        self.http = http_client or get_http_client()

    def _get_headers(self) -> Dict[str, str]:
        """Get API headers."""
        return {"X-Api-Key": self.api_key}

    def _url(self, endpoint: str) -> str:
        return f"{self.base_url}/api/v3/{endpoint}"

    async def _get(self, endpoint: str, params: Optional[Dict[str, Any]] = None, what: str = "data") -> Any:
        try:
            response = await self.http.get_async(
                self._url(endpoint), SERVICE_NAME, headers=self._get_headers(), params=params
            )
            return response.json()
        except httpx.HTTPError as e:
            raise ServiceError(SERVICE_NAME, f"Error fetching {what} from Sonarr: {str(e)}", e)

    async def get_series(self) -> List[CatalogEntry]:
        """Récupère toutes les séries depuis Sonarr."""
        data = await self._get("series", what="series")
        return [
            CatalogEntry(
                id=series["id"],
                title=series.get("title", ""),
                path=series.get("path"),
                tvdb_id=series.get("tvdbId") or None,
                tmdb_id=series.get("tmdbId") or None,
            )
            for series in data
        ]

    async def get_episode_files(self, series_id: int) -> List[ArrFileRecord]:
        """Récupère les fichiers épisodes d'une série."""
        data = await self._get("episodefile", params={"seriesId": series_id}, what="episode files")
        return [
            ArrFileRecord(
                id=f["id"],
                catalog_id=f.get("seriesId", series_id),
                path=f.get("path", ""),
                size=f.get("size", 0),
                season_number=f.get("seasonNumber"),
                quality=((f.get("quality") or {}).get("quality") or {}).get("name", ""),
            )
            for f in data
        ]

    async def get_episode_ids(self, series_id: int, season_number: int, episode_number: Optional[int] = None) -> List[int]:
        """IDs des épisodes d'une saison (ou d'un seul épisode)."""
        data = await self._get("episode", params={"seriesId": series_id}, what="episodes")
        return [
            ep["id"]
            for ep in data
            if ep.get("seasonNumber") == season_number
            and (episode_number is None or ep.get("episodeNumber") == episode_number)
        ]

    async def find_episode_file_by_path(self, series_id: int, path: str) -> Optional[ArrFileRecord]:
        """Trouve le fichier épisode par chemin exact, puis par nom de fichier."""
        files = await self.get_episode_files(series_id)
        key = path_key(path)
        for record in files:
            if path_key(record.path) == key:
                return record
        name = file_name(key)
        for record in files:
            if file_name(path_key(record.path)) == name:
                return record
        return None

    async def trigger_search(self, series_id: int, episode_ids: Optional[List[int]] = None) -> None:
        """Lance une recherche (série entière, ou épisodes précis)."""
        if episode_ids:
            payload: Dict[str, Any] = {"name": "EpisodeSearch", "episodeIds": episode_ids}
        else:
            payload = {"name": "SeriesSearch", "seriesId": series_id}
        try:
            await self.http.post_async(self._url("command"), SERVICE_NAME, headers=self._get_headers(), json=payload)
        except httpx.HTTPError as e:
            raise ServiceError(SERVICE_NAME, f"Error triggering search in Sonarr: {str(e)}", e)
        logger.info("Triggered Sonarr %s for series %s", payload["name"], series_id)

    async def delete_episode_file(self, episode_file_id: int) -> None:
        try:
            await self.http.delete_async(
                self._url(f"episodefile/{episode_file_id}"), SERVICE_NAME, headers=self._get_headers()
            )
        except httpx.HTTPError as e:
            raise ServiceError(SERVICE_NAME, f"Error deleting episode file from Sonarr: {str(e)}", e)

    async def delete_episode_file_by_path(self, series_id: int, path: str) -> bool:
        """Supprime le fichier via l'API. Retourne False si introuvable ou en échec."""
        try:
            record = await self.find_episode_file_by_path(series_id, path)
            if record is None:
                logger.warning("Episode file not found in Sonarr for series %s: %s", series_id, path)
                return False
            await self.delete_episode_file(record.id)
        except ServiceError as e:
            logger.warning("Sonarr API deletion failed for %s: %s", path, e)
            return False
        logger.info("Deleted episode file %s via Sonarr API: %s", record.id, path)
        return True

    async def get_queue(self) -> List[QueueEntry]:
        """File de téléchargement active de Sonarr."""
        data = await self._get("queue", params={"pageSize": 1000, "includeUnknownSeriesItems": "false"}, what="queue")
        records = data.get("records", []) if isinstance(data, dict) else data
        return [
            QueueEntry(
                download_id=str(r.get("downloadId") or r.get("id", "")),
                catalog_id=r.get("seriesId"),
                title=r.get("title", ""),
                status=r.get("status", ""),
                size=int(r.get("size") or 0),
                size_left=int(r.get("sizeleft") or 0),
                error_message=r.get("errorMessage"),
                episode_id=r.get("episodeId"),
            )
            for r in records
        ]

    async def test_connection(self) -> bool:
        try:
            await self.http.get_async(
                self._url("system/status"), SERVICE_NAME, headers=self._get_headers(), timeout=connect_test_timeout()
            )
            return True
        except httpx.HTTPError as e:
            logger.warning("Sonarr connection test failed: %s", e)
            return False

"""Radarr API client."""
import logging
import httpx
from typing import List, Dict, Optional

from mediatier.config import get_config, RadarrConfig
from mediatier.core.errors import ServiceError
from mediatier.core.filesystem import path_key, file_name
from mediatier.core.models import CatalogEntry, ArrFileRecord, QueueEntry
from mediatier.utils.http_client import RobustHTTPClient, get_http_client, connect_test_timeout

logger = logging.getLogger(__name__)

SERVICE_NAME = "radarr"


class RadarrService:
    """Service pour interagir avec Radarr."""

    def __init__(self, config: Optional[RadarrConfig] = None, http_client: Optional[RobustHTTPClient] = None):
        if config is None:
            config = get_config().radarr
        if not config:
            raise ValueError("Radarr configuration not found")
        self.base_url = config.url.rstrip("/")
        self.api_key = config.api_key
        self.http = http_client or get_http_client()

    def _get_headers(self) -> Dict[str, str]:
        """Get API headers."""
        return {"X-Api-Key": self.api_key}

    def _url(self, endpoint: str) -> str:
        return f"{self.base_url}/api/v3/{endpoint}"

    async def get_movies(self) -> List[CatalogEntry]:
        """Récupère tous les films depuis Radarr."""
        try:
            response = await self.http.get_async(self._url("movie"), SERVICE_NAME, headers=self._get_headers())
        except httpx.HTTPError as e:
            raise ServiceError(SERVICE_NAME, f"Error fetching movies from Radarr: {str(e)}", e)
        return [
            CatalogEntry(
                id=movie["id"],
                title=movie.get("title", ""),
                path=movie.get("path"),
                tmdb_id=movie.get("tmdbId") or None,
            )
            for movie in response.json()
        ]

    async def get_movie_files(self, movie_id: int) -> List[ArrFileRecord]:
        try:
            response = await self.http.get_async(
                self._url("moviefile"), SERVICE_NAME, headers=self._get_headers(), params={"movieId": movie_id}
            )
        except httpx.HTTPError as e:
            raise ServiceError(SERVICE_NAME, f"Error fetching movie files from Radarr: {str(e)}", e)
        return [
            ArrFileRecord(
                id=f["id"],
                catalog_id=f.get("movieId", movie_id),
                path=f.get("path", ""),
                size=f.get("size", 0),
                quality=((f.get("quality") or {}).get("quality") or {}).get("name", ""),
            )
            for f in response.json()
        ]

    async def find_movie_file_by_path(self, movie_id: int, path: str) -> Optional[ArrFileRecord]:
        """Trouve le fichier film par chemin exact, puis par nom de fichier."""
        files = await self.get_movie_files(movie_id)
        key = path_key(path)
        exact = next((f for f in files if path_key(f.path) == key), None)
        if exact is not None:
            return exact
        name = file_name(key)
        return next((f for f in files if file_name(path_key(f.path)) == name), None)

    async def trigger_search(self, movie_id: int) -> None:
        payload = {"name": "MoviesSearch", "movieIds": [movie_id]}
        try:
            await self.http.post_async(self._url("command"), SERVICE_NAME, headers=self._get_headers(), json=payload)
        except httpx.HTTPError as e:
            raise ServiceError(SERVICE_NAME, f"Error triggering search in Radarr: {str(e)}", e)
        logger.info("Triggered Radarr MoviesSearch for movie %s", movie_id)

    async def delete_movie_file(self, movie_file_id: int) -> None:
        try:
            await self.http.delete_async(
                self._url(f"moviefile/{movie_file_id}"), SERVICE_NAME, headers=self._get_headers()
            )
        except httpx.HTTPError as e:
            raise ServiceError(SERVICE_NAME, f"Error deleting movie file from Radarr: {str(e)}", e)

    async def delete_movie_file_by_path(self, movie_id: int, path: str) -> bool:
        try:
            record = await self.find_movie_file_by_path(movie_id, path)
            if record is None:
                logger.warning("Movie file not found in Radarr for movie %s: %s", movie_id, path)
                return False
            await self.delete_movie_file(record.id)
        except ServiceError as e:
            logger.warning("Radarr API deletion failed for %s: %s", path, e)
            return False
        logger.info("Deleted movie file %s via Radarr API: %s", record.id, path)
        return True

    async def get_queue(self) -> List[QueueEntry]:
        """File de téléchargement active de Radarr."""
        try:
            response = await self.http.get_async(
                self._url("queue"), SERVICE_NAME, headers=self._get_headers(), params={"pageSize": 1000}
            )
        except httpx.HTTPError as e:
            raise ServiceError(SERVICE_NAME, f"Error fetching queue from Radarr: {str(e)}", e)
        data = response.json()
        records = data.get("records", []) if isinstance(data, dict) else data
        return [
            QueueEntry(
                download_id=str(r.get("downloadId") or r.get("id", "")),
                catalog_id=r.get("movieId"),
                title=r.get("title", ""),
                status=r.get("status", ""),
                size=int(r.get("size") or 0),
                size_left=int(r.get("sizeleft") or 0),
                error_message=r.get("errorMessage"),
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
            logger.warning("Radarr connection test failed: %s", e)
            return False

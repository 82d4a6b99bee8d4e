"""Jellyseerr (Overseerr API) client."""
import logging
import httpx
from typing import List, Dict, Any, Optional

from mediatier.config import get_config, JellyseerrConfig
from mediatier.core.errors import ServiceError
from mediatier.core.models import MediaType
from mediatier.utils.http_client import RobustHTTPClient, get_http_client, connect_test_timeout

logger = logging.getLogger(__name__)

SERVICE_NAME = "jellyseerr"


class JellyseerrService:
    """Service pour interagir avec Jellyseerr."""

    def __init__(self, config: Optional[JellyseerrConfig] = None, http_client: Optional[RobustHTTPClient] = None):
        if config is None:
            config = get_config().jellyseerr
        if not config:
            raise ValueError("Jellyseerr configuration not found")
        self.base_url = config.url.rstrip("/")
        self.api_key = config.api_key
        self.http = http_client or get_http_client()

    def _get_headers(self) -> Dict[str, str]:
        """Get API headers."""
        return {"X-Api-Key": self.api_key}

    async def create_request(
        self,
        tmdb_id: int,
        media_type: MediaType,
        tvdb_id: Optional[int] = None,
        seasons: Optional[List[int]] = None,
    ) -> Optional[int]:
        """Crée une demande de ré-acquisition. Retourne l'id de la demande.

        Sans `seasons`, une série est demandée en entier.
        """
        payload: Dict[str, Any] = {
            "mediaType": "tv" if media_type.is_episodic else "movie",
            "mediaId": tmdb_id,
        }
        if media_type.is_episodic:
            if tvdb_id:
                payload["tvdbId"] = tvdb_id
            if seasons:
                payload["seasons"] = seasons
        try:
            response = await self.http.post_async(
                f"{self.base_url}/api/v1/request",
                SERVICE_NAME,
                headers=self._get_headers(),
                json=payload,
            )
        except httpx.HTTPError as e:
            raise ServiceError(SERVICE_NAME, f"Error creating request in Jellyseerr: {str(e)}", e)

        request_id = None
        try:
            body = response.json()
            if isinstance(body, dict):
                request_id = body.get("id")
        except ValueError:
            logger.debug("Jellyseerr returned no JSON body for request on tmdb %s", tmdb_id)
        logger.info("Created Jellyseerr %s request for tmdb %s (request %s)", payload["mediaType"], tmdb_id, request_id)
        return request_id

    async def test_connection(self) -> bool:
        try:
            await self.http.get_async(
                f"{self.base_url}/api/v1/status",
                SERVICE_NAME,
                headers=self._get_headers(),
                timeout=connect_test_timeout(),
            )
            return True
        except httpx.HTTPError as e:
            logger.warning("Jellyseerr connection test failed: %s", e)
            return False

"""Jellyfin API client."""
import asyncio
import logging
import time
import httpx
from dataclasses import dataclass
from datetime import datetime
from typing import List, Dict, Optional, Iterable

from mediatier.config import get_config, JellyfinConfig
from mediatier.core.errors import ServiceError
from mediatier.core.filesystem import path_key
from mediatier.utils.http_client import RobustHTTPClient, get_http_client, connect_test_timeout
from mediatier.utils.timeutil import parse_iso_datetime

logger = logging.getLogger(__name__)

SERVICE_NAME = "jellyfin"


@dataclass
class JellyfinItem:
    id: str
    name: str
    path: Optional[str]
    last_played: Optional[datetime] = None


class JellyfinService:
    """Service pour interagir avec Jellyfin.

    Le catalogue complet est mis en cache (TTL court) : un seul
    rafraîchissement à la fois, les appelants concurrents attendent le même.
    """

    def __init__(
        self,
        config: Optional[JellyfinConfig] = None,
        http_client: Optional[RobustHTTPClient] = None,
        clock=time.monotonic,
    ):
        if config is None:
            config = get_config().jellyfin
        if not config:
            raise ValueError("Jellyfin configuration not found")
        self.base_url = config.url.rstrip("/")
        self.api_key = config.api_key
        self.user_id = config.user_id
        self.cache_ttl = config.cache_ttl_seconds
        self.http = http_client or get_http_client()
        self._clock = clock
        self._cache_lock = asyncio.Lock()
        self._items: Optional[List[JellyfinItem]] = None
        self._by_path: Dict[str, JellyfinItem] = {}
        self._cache_expires_at = 0.0

    def _get_headers(self) -> Dict[str, str]:
        """Get API headers."""
        return {"X-Emby-Token": self.api_key}

    def _cache_valid(self) -> bool:
        return self._items is not None and self._clock() < self._cache_expires_at

    async def _fetch_items(self) -> List[JellyfinItem]:
        if self.user_id:
            url = f"{self.base_url}/Users/{self.user_id}/Items"
        else:
            url = f"{self.base_url}/Items"
        params = {
            "Recursive": "true",
            "IncludeItemTypes": "Movie,Episode",
            "Fields": "Path,UserData",
        }
        try:
            response = await self.http.get_async(url, SERVICE_NAME, headers=self._get_headers(), params=params)
        except httpx.HTTPError as e:
            raise ServiceError(SERVICE_NAME, f"Error fetching items from Jellyfin: {str(e)}", e)

        items = []
        for raw in response.json().get("Items", []):
            user_data = raw.get("UserData") or {}
            items.append(JellyfinItem(
                id=raw.get("Id"),
                name=raw.get("Name", ""),
                path=raw.get("Path"),
                last_played=parse_iso_datetime(user_data.get("LastPlayedDate") or raw.get("LastPlayedDate")),
            ))
        return items

    async def get_items(self) -> List[JellyfinItem]:
        """Catalogue complet (depuis le cache si encore valide)."""
        if self._cache_valid():
            return self._items
        async with self._cache_lock:
            # un autre appelant a pu rafraîchir pendant l'attente
            if self._cache_valid():
                return self._items
            items = await self._fetch_items()
            self._items = items
            self._by_path = {path_key(item.path): item for item in items if item.path}
            self._cache_expires_at = self._clock() + self.cache_ttl
            logger.debug("Jellyfin catalog refreshed: %d items", len(items))
            return items

    async def find_item(self, path: str) -> Optional[JellyfinItem]:
        await self.get_items()
        return self._by_path.get(path_key(path))

    async def find_item_id(self, path: str) -> Optional[str]:
        item = await self.find_item(path)
        return item.id if item else None

    async def get_last_played_date(self, path: str) -> Optional[datetime]:
        item = await self.find_item(path)
        return item.last_played if item else None

    async def get_last_played_dates(self, paths: Iterable[str]) -> Dict[str, Optional[datetime]]:
        """Dernières lectures pour plusieurs chemins, en un seul passage sur le cache."""
        await self.get_items()
        result = {}
        for path in paths:
            item = self._by_path.get(path_key(path))
            result[path] = item.last_played if item else None
        return result

    async def test_connection(self) -> bool:
        try:
            await self.http.get_async(
                f"{self.base_url}/System/Info",
                SERVICE_NAME,
                headers=self._get_headers(),
                timeout=connect_test_timeout(),
            )
            return True
        except httpx.HTTPError as e:
            logger.warning("Jellyfin connection test failed: %s", e)
            return False

"""Download client queues: qBittorrent, Transmission, SABnzbd."""
import asyncio
import base64
import logging
import httpx
from qbittorrentapi import Client
from typing import List, Dict, Any, Optional

from mediatier.config import get_config, DownloadClientConfig
from mediatier.core.models import DownloadClientType, DownloadQueueItem
from mediatier.utils.http_client import RobustHTTPClient, get_http_client, connect_test_timeout

logger = logging.getLogger(__name__)

TRANSMISSION_SESSION_HEADER = "X-Transmission-Session-Id"

_QBITTORRENT_STATUSES = {
    "downloading": "Downloading",
    "forcedDL": "Downloading",
    "metaDL": "Downloading",
    "forcedMetaDL": "Downloading",
    "stalledDL": "Stalled",
    "queuedDL": "Queued",
    "checkingDL": "Checking",
    "checkingResumeData": "Checking",
    "pausedDL": "Paused",
    "stoppedDL": "Paused",
    "allocating": "Allocating",
    "moving": "Moving",
    "error": "Error",
    "missingFiles": "Error",
}

_TRANSMISSION_STATUSES = {
    0: "Paused",
    1: "Queued",
    2: "Checking",
    3: "Queued",
    4: "Downloading",
    5: "Queued",
    6: "Seeding",
}


class DownloadClientService:
    """Lecture des files actives des clients de téléchargement configurés.

    Seuls les éléments non terminés sont remontés. Un client injoignable
    donne une liste vide (journalisé), jamais une exception.
    """

    def __init__(
        self,
        clients: Optional[List[DownloadClientConfig]] = None,
        http_client: Optional[RobustHTTPClient] = None,
    ):
        if clients is None:
            clients = get_config().download_clients
        self.clients = [c for c in clients if c.enabled]
        self.http = http_client or get_http_client()
        self._transmission_sessions: Dict[str, str] = {}

    def get_client(self, name: str) -> Optional[DownloadClientConfig]:
        return next((c for c in self.clients if c.name == name), None)

    async def get_all_queues(self) -> List[DownloadQueueItem]:
        results = await asyncio.gather(*(self.get_queue(c) for c in self.clients))
        return [item for queue in results for item in queue]

    async def get_queue(self, client: DownloadClientConfig) -> List[DownloadQueueItem]:
        try:
            if client.type == DownloadClientType.QBITTORRENT:
                return await asyncio.to_thread(self._get_qbittorrent_queue, client)
            if client.type == DownloadClientType.TRANSMISSION:
                return await self._get_transmission_queue(client)
            if client.type == DownloadClientType.SABNZBD:
                return await self._get_sabnzbd_queue(client)
        except Exception as e:
            logger.warning("Error fetching queue from %s (%s): %s", client.name, client.type.value, e)
            return []
        logger.warning("Unsupported download client type: %s", client.type)
        return []

    async def test_connection(self, client: DownloadClientConfig) -> bool:
        try:
            if client.type == DownloadClientType.QBITTORRENT:
                await asyncio.to_thread(self._test_qbittorrent, client)
            elif client.type == DownloadClientType.TRANSMISSION:
                await self._transmission_rpc(client, "session-get", {}, timeout=connect_test_timeout())
            elif client.type == DownloadClientType.SABNZBD:
                await self._sabnzbd_call(client, "version", timeout=connect_test_timeout())
            return True
        except Exception as e:
            logger.warning("Connection test failed for %s: %s", client.name, e)
            return False

    # qBittorrent

    def _qbittorrent_client(self, client: DownloadClientConfig, timeout: float) -> Client:
        qb = Client(
            host=client.url.rstrip("/"),
            username=client.username,
            password=client.password,
            REQUESTS_ARGS={"timeout": timeout},
        )
        qb.auth_log_in()
        return qb

    def _test_qbittorrent(self, client: DownloadClientConfig) -> None:
        qb = self._qbittorrent_client(client, connect_test_timeout())
        qb.app_version()

    def _get_qbittorrent_queue(self, client: DownloadClientConfig) -> List[DownloadQueueItem]:
        qb = self._qbittorrent_client(client, self.http.default_timeout)
        items = []
        for torrent in qb.torrents_info():
            if torrent.progress >= 1:
                continue
            items.append(DownloadQueueItem(
                id=torrent.hash,
                name=torrent.name,
                size=torrent.size,
                size_remaining=torrent.amount_left,
                progress=round(torrent.progress * 100, 1),
                status=_QBITTORRENT_STATUSES.get(torrent.state, torrent.state),
                client_type=DownloadClientType.QBITTORRENT,
            ))
        return items

    # Transmission

    def _transmission_headers(self, client: DownloadClientConfig) -> Dict[str, str]:
        headers = {}
        session_id = self._transmission_sessions.get(client.name)
        if session_id:
            headers[TRANSMISSION_SESSION_HEADER] = session_id
        if client.username:
            token = base64.b64encode(f"{client.username}:{client.password or ''}".encode()).decode()
            headers["Authorization"] = f"Basic {token}"
        return headers

    async def _transmission_rpc(
        self,
        client: DownloadClientConfig,
        method: str,
        arguments: Dict[str, Any],
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        url = client.url.rstrip("/")
        if not url.endswith("/rpc"):
            url = f"{url}/transmission/rpc"
        payload = {"method": method, "arguments": arguments}
        try:
            response = await self.http.post_async(
                url, client.name, headers=self._transmission_headers(client), json=payload, timeout=timeout
            )
        except httpx.HTTPStatusError as e:
            # 409 = identifiant de session périmé, renvoyé dans l'en-tête
            if e.response.status_code != 409:
                raise
            self._transmission_sessions[client.name] = e.response.headers.get(TRANSMISSION_SESSION_HEADER, "")
            response = await self.http.post_async(
                url, client.name, headers=self._transmission_headers(client), json=payload, timeout=timeout
            )
        data = response.json()
        if data.get("result") != "success":
            raise RuntimeError(f"Transmission RPC {method} failed: {data.get('result')}")
        return data.get("arguments", {})

    async def _get_transmission_queue(self, client: DownloadClientConfig) -> List[DownloadQueueItem]:
        arguments = await self._transmission_rpc(client, "torrent-get", {
            "fields": ["hashString", "name", "totalSize", "leftUntilDone", "percentDone", "status", "errorString"],
        })
        items = []
        for torrent in arguments.get("torrents", []):
            if torrent.get("percentDone", 0) >= 1:
                continue
            items.append(DownloadQueueItem(
                id=torrent.get("hashString", ""),
                name=torrent.get("name", ""),
                size=torrent.get("totalSize", 0),
                size_remaining=torrent.get("leftUntilDone", 0),
                progress=round(torrent.get("percentDone", 0) * 100, 1),
                status=_TRANSMISSION_STATUSES.get(torrent.get("status"), "Unknown"),
                client_type=DownloadClientType.TRANSMISSION,
                error_message=torrent.get("errorString") or None,
            ))
        return items

    # SABnzbd

    async def _sabnzbd_call(self, client: DownloadClientConfig, mode: str, timeout: Optional[float] = None) -> Dict[str, Any]:
        response = await self.http.get_async(
            f"{client.url.rstrip('/')}/api",
            client.name,
            params={"mode": mode, "output": "json", "apikey": client.api_key or ""},
            timeout=timeout,
        )
        return response.json()

    async def _get_sabnzbd_queue(self, client: DownloadClientConfig) -> List[DownloadQueueItem]:
        data = await self._sabnzbd_call(client, "queue")
        items = []
        for slot in (data.get("queue") or {}).get("slots", []):
            size_mb = float(slot.get("mb") or 0)
            left_mb = float(slot.get("mbleft") or 0)
            items.append(DownloadQueueItem(
                id=slot.get("nzo_id", ""),
                name=slot.get("filename", ""),
                size=int(size_mb * 1024 * 1024),
                size_remaining=int(left_mb * 1024 * 1024),
                progress=float(slot.get("percentage") or 0),
                status=slot.get("status", ""),
                client_type=DownloadClientType.SABNZBD,
            ))
        return items

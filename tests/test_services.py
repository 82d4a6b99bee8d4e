"""Tests for the external service clients against a mocked HTTP transport."""

import asyncio
import json
from datetime import datetime

import httpx
import pytest

from mediatier.config import (
    DownloadClientConfig,
    JellyfinConfig,
    JellyseerrConfig,
    RadarrConfig,
    SonarrConfig,
)
from mediatier.core.errors import ServiceError
from mediatier.core.models import DownloadClientType, MediaType
from mediatier.services.download_clients import DownloadClientService
from mediatier.services.jellyfin import JellyfinService
from mediatier.services.jellyseerr import JellyseerrService
from mediatier.services.radarr import RadarrService
from mediatier.services.sonarr import SonarrService
from mediatier.utils.http_client import RobustHTTPClient


def http_for(handler):
    return RobustHTTPClient(max_retries=0, retry_wait_min=0, retry_wait_max=0, transport=httpx.MockTransport(handler))


class FakeMonotonic:
    def __init__(self):
        self.value = 1000.0

    def __call__(self):
        return self.value


class TestSonarr:
    @pytest.mark.asyncio
    async def test_series_catalog(self):
        def handler(request):
            assert request.headers["X-Api-Key"] == "key"
            assert request.url.path == "/api/v3/series"
            return httpx.Response(200, json=[
                {"id": 7, "title": "Show", "path": "/media/tv/Show", "tvdbId": 555, "tmdbId": 0},
            ])

        sonarr = SonarrService(SonarrConfig(url="http://sonarr:8989/", api_key="key"), http_for(handler))
        [entry] = await sonarr.get_series()

        assert (entry.id, entry.title, entry.path, entry.tvdb_id) == (7, "Show", "/media/tv/Show", 555)
        assert entry.tmdb_id is None

    @pytest.mark.asyncio
    async def test_find_episode_file_falls_back_to_file_name(self):
        def handler(request):
            return httpx.Response(200, json=[
                {"id": 1, "seriesId": 7, "path": "/tv/Show/Season 1/Show - S01E01.mkv", "size": 10},
                {"id": 2, "seriesId": 7, "path": "/tv/Show/Season 1/Show - S01E02.mkv", "size": 20},
            ])

        sonarr = SonarrService(SonarrConfig(url="http://sonarr", api_key="key"), http_for(handler))
        record = await sonarr.find_episode_file_by_path(7, "/media/tv/Show/Season 1/show - s01e02.mkv")

        assert record.id == 2

    @pytest.mark.asyncio
    async def test_episode_search_command(self):
        seen = []

        def handler(request):
            if request.url.path == "/api/v3/episode":
                return httpx.Response(200, json=[
                    {"id": 101, "seasonNumber": 1, "episodeNumber": 1},
                    {"id": 102, "seasonNumber": 1, "episodeNumber": 2},
                    {"id": 201, "seasonNumber": 2, "episodeNumber": 1},
                ])
            seen.append(json.loads(request.content))
            return httpx.Response(201, json={})

        sonarr = SonarrService(SonarrConfig(url="http://sonarr", api_key="key"), http_for(handler))
        ids = await sonarr.get_episode_ids(7, 1)
        await sonarr.trigger_search(7, ids)
        await sonarr.trigger_search(7)

        assert ids == [101, 102]
        assert seen == [
            {"name": "EpisodeSearch", "episodeIds": [101, 102]},
            {"name": "SeriesSearch", "seriesId": 7},
        ]

    @pytest.mark.asyncio
    async def test_queue_records(self):
        def handler(request):
            assert request.url.params["pageSize"] == "1000"
            return httpx.Response(200, json={"records": [
                {"downloadId": "abc", "seriesId": 7, "title": "Show", "size": 100, "sizeleft": 25, "episodeId": 102},
            ]})

        sonarr = SonarrService(SonarrConfig(url="http://sonarr", api_key="key"), http_for(handler))
        [entry] = await sonarr.get_queue()

        assert entry.catalog_id == 7
        assert entry.progress == 75.0

    @pytest.mark.asyncio
    async def test_http_failure_becomes_service_error(self):
        def handler(request):
            return httpx.Response(500)

        sonarr = SonarrService(SonarrConfig(url="http://sonarr", api_key="key"), http_for(handler))
        with pytest.raises(ServiceError) as exc:
            await sonarr.get_series()
        assert exc.value.service == "sonarr"

    @pytest.mark.asyncio
    async def test_delete_by_path_reports_missing_file(self):
        def handler(request):
            return httpx.Response(200, json=[])

        sonarr = SonarrService(SonarrConfig(url="http://sonarr", api_key="key"), http_for(handler))
        assert await sonarr.delete_episode_file_by_path(7, "/media/tv/Show/e.mkv") is False


class TestRadarr:
    @pytest.mark.asyncio
    async def test_delete_movie_file_by_path(self):
        deleted = []

        def handler(request):
            if request.method == "DELETE":
                deleted.append(request.url.path)
                return httpx.Response(200)
            return httpx.Response(200, json=[{"id": 9, "movieId": 42, "path": "/media/movies/Film/Film.mkv"}])

        radarr = RadarrService(RadarrConfig(url="http://radarr", api_key="key"), http_for(handler))

        assert await radarr.delete_movie_file_by_path(42, "/media/movies/Film/Film.mkv") is True
        assert deleted == ["/api/v3/moviefile/9"]

    @pytest.mark.asyncio
    async def test_search_command(self):
        seen = []

        def handler(request):
            seen.append(json.loads(request.content))
            return httpx.Response(201, json={})

        radarr = RadarrService(RadarrConfig(url="http://radarr", api_key="key"), http_for(handler))
        await radarr.trigger_search(42)

        assert seen == [{"name": "MoviesSearch", "movieIds": [42]}]


class TestJellyseerr:
    @pytest.mark.asyncio
    async def test_season_request_payload(self):
        seen = []

        def handler(request):
            seen.append(json.loads(request.content))
            return httpx.Response(201, json={"id": 501})

        jellyseerr = JellyseerrService(JellyseerrConfig(url="http://jellyseerr", api_key="key"), http_for(handler))
        request_id = await jellyseerr.create_request(777, MediaType.ANIME, tvdb_id=555, seasons=[2])

        assert request_id == 501
        assert seen == [{"mediaType": "tv", "mediaId": 777, "tvdbId": 555, "seasons": [2]}]

    @pytest.mark.asyncio
    async def test_whole_series_request_omits_seasons(self):
        seen = []

        def handler(request):
            seen.append(json.loads(request.content))
            return httpx.Response(201, json={"id": 502})

        jellyseerr = JellyseerrService(JellyseerrConfig(url="http://jellyseerr", api_key="key"), http_for(handler))
        await jellyseerr.create_request(777, MediaType.SERIES, tvdb_id=555)

        assert seen == [{"mediaType": "tv", "mediaId": 777, "tvdbId": 555}]

    @pytest.mark.asyncio
    async def test_movie_request_payload(self):
        seen = []

        def handler(request):
            seen.append(json.loads(request.content))
            return httpx.Response(201, json={"id": 12})

        jellyseerr = JellyseerrService(JellyseerrConfig(url="http://jellyseerr", api_key="key"), http_for(handler))
        await jellyseerr.create_request(603, MediaType.MOVIE)

        assert seen == [{"mediaType": "movie", "mediaId": 603}]

    @pytest.mark.asyncio
    async def test_failure_raises(self):
        def handler(request):
            return httpx.Response(500)

        jellyseerr = JellyseerrService(JellyseerrConfig(url="http://jellyseerr", api_key="key"), http_for(handler))
        with pytest.raises(ServiceError):
            await jellyseerr.create_request(603, MediaType.MOVIE)


class TestJellyfin:
    ITEMS = {"Items": [
        {
            "Id": "jf-1",
            "Name": "Film",
            "Path": "/media/movies/Film/Film.mkv",
            "UserData": {"LastPlayedDate": "2024-05-30T20:15:00.1234567Z"},
        },
        {"Id": "jf-2", "Name": "Other", "Path": "/media/movies/Other/Other.mkv", "UserData": {}},
    ]}

    def make_service(self, calls, clock):
        def handler(request):
            calls.append(request.url.path)
            assert request.headers["X-Emby-Token"] == "key"
            return httpx.Response(200, json=self.ITEMS)

        config = JellyfinConfig(url="http://jellyfin", api_key="key", user_id="u1", cache_ttl_seconds=60)
        return JellyfinService(config, http_for(handler), clock=clock)

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_refresh(self):
        calls = []
        service = self.make_service(calls, FakeMonotonic())

        results = await asyncio.gather(*(service.get_items() for _ in range(5)))

        assert calls == ["/Users/u1/Items"]
        assert all(len(items) == 2 for items in results)

    @pytest.mark.asyncio
    async def test_cache_expires_after_ttl(self):
        calls = []
        clock = FakeMonotonic()
        service = self.make_service(calls, clock)

        await service.get_items()
        clock.value += 30
        await service.get_items()
        assert len(calls) == 1

        clock.value += 31
        await service.get_items()
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_lookup_by_path_and_last_played(self):
        service = self.make_service([], FakeMonotonic())

        assert await service.find_item_id("/MEDIA/movies/Film/Film.mkv") == "jf-1"
        assert await service.get_last_played_date("/media/movies/Film/Film.mkv") == datetime(2024, 5, 30, 20, 15, 0, 123456)
        assert await service.get_last_played_date("/media/movies/Other/Other.mkv") is None

    @pytest.mark.asyncio
    async def test_batched_last_played_dates(self):
        calls = []
        service = self.make_service(calls, FakeMonotonic())

        dates = await service.get_last_played_dates([
            "/media/movies/Film/Film.mkv",
            "/media/movies/Other/Other.mkv",
            "/media/movies/Unknown.mkv",
        ])

        assert dates == {
            "/media/movies/Film/Film.mkv": datetime(2024, 5, 30, 20, 15, 0, 123456),
            "/media/movies/Other/Other.mkv": None,
            "/media/movies/Unknown.mkv": None,
        }
        assert len(calls) == 1


class TestDownloadClients:
    @pytest.mark.asyncio
    async def test_transmission_session_handshake(self):
        calls = []

        def handler(request):
            calls.append(request.headers.get("X-Transmission-Session-Id"))
            if request.headers.get("X-Transmission-Session-Id") != "sess-1":
                return httpx.Response(409, headers={"X-Transmission-Session-Id": "sess-1"})
            return httpx.Response(200, json={"result": "success", "arguments": {"torrents": [
                {"hashString": "h1", "name": "Film", "totalSize": 100, "leftUntilDone": 40,
                 "percentDone": 0.6, "status": 4, "errorString": ""},
                {"hashString": "h2", "name": "Done", "totalSize": 100, "leftUntilDone": 0,
                 "percentDone": 1.0, "status": 6},
            ]}})

        client = DownloadClientConfig(name="tr", type=DownloadClientType.TRANSMISSION, url="http://transmission:9091")
        service = DownloadClientService([client], http_for(handler))

        [item] = await service.get_queue(client)

        assert calls == [None, "sess-1"]
        assert (item.id, item.progress, item.status) == ("h1", 60.0, "Downloading")
        assert item.error_message is None

    @pytest.mark.asyncio
    async def test_sabnzbd_queue(self):
        def handler(request):
            assert request.url.params["mode"] == "queue"
            assert request.url.params["apikey"] == "sab-key"
            return httpx.Response(200, json={"queue": {"slots": [
                {"nzo_id": "n1", "filename": "Film", "mb": "100", "mbleft": "25", "percentage": "75", "status": "Downloading"},
            ]}})

        client = DownloadClientConfig(name="sab", type=DownloadClientType.SABNZBD, url="http://sab", api_key="sab-key")
        service = DownloadClientService([client], http_for(handler))

        [item] = await service.get_all_queues()

        assert item.size == 100 * 1024 * 1024
        assert item.progress == 75.0

    @pytest.mark.asyncio
    async def test_unreachable_client_gives_empty_queue(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = DownloadClientConfig(name="sab", type=DownloadClientType.SABNZBD, url="http://sab")
        service = DownloadClientService([client], http_for(handler))

        assert await service.get_queue(client) == []
        assert await service.test_connection(client) is False

    def test_disabled_clients_are_ignored(self):
        clients = [
            DownloadClientConfig(name="a", type=DownloadClientType.SABNZBD, url="http://a", enabled=False),
            DownloadClientConfig(name="b", type=DownloadClientType.SABNZBD, url="http://b"),
        ]
        service = DownloadClientService(clients, http_for(lambda request: httpx.Response(200)))

        assert [c.name for c in service.clients] == ["b"]
        assert service.get_client("a") is None

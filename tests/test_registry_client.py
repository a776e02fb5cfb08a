"""Tests for the Modrinth registry client (HTTP mocked through a fake session)."""

import json
import threading
import time
from unittest.mock import Mock

import pytest
import requests

from modsync.core.api.errors import NetworkError, NetworkTimeoutError, NotFoundError
from modsync.core.api.registry import RegistryClient
from modsync.utils.config import EngineConfig


def response(status=200, payload=None):
    mock = Mock()
    mock.status_code = status
    mock.json.return_value = payload
    return mock


def version_payload(version_id, number, game_versions=("1.20.4",), loaders=("fabric",),
                    date="2024-01-01T00:00:00Z", version_type="release"):
    return {
        "id": version_id,
        "version_number": number,
        "name": number,
        "game_versions": list(game_versions),
        "loaders": list(loaders),
        "date_published": date,
        "version_type": version_type,
        "files": [{"url": f"https://cdn.example/{version_id}.jar", "filename": f"{version_id}.jar",
                   "primary": True, "size": 1}],
        "dependencies": []
    }


@pytest.fixture
def session():
    mock = Mock()
    mock.headers = {}
    return mock


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def client(session, sleeps):
    return RegistryClient(session=session, rate_limit_ms=0, sleep=sleeps.append)


class TestConstruction:
    def test_user_agent_header(self, session):
        RegistryClient(session=session, user_agent="tests/1.0")
        assert session.headers["User-Agent"] == "tests/1.0"

    def test_from_config(self, session):
        config = EngineConfig(api_base_url="https://mirror.example/v2/", rate_limit_ms=250, max_retries=1)
        client = RegistryClient.from_config(config, session=session)
        assert client.base_url == "https://mirror.example/v2"
        assert client.rate_limit_ms == 250
        assert client.max_retries == 1


class TestQueryVersions:
    def test_filters_by_loader_and_runtime_version(self, client, session):
        session.get.return_value = response(payload=[
            version_payload("a", "1.0", loaders=["fabric-loader"]),
            version_payload("b", "1.1", loaders=["forge"]),
            version_payload("c", "1.2", game_versions=["1.20.1"]),
        ])

        versions = client.query_versions("AABBCCDD", "fabric", "1.20.4")

        assert [v.id for v in versions] == ["a"]
        session.get.assert_called_once_with(
            "https://api.modrinth.com/v2/project/AABBCCDD/version", params=None, timeout=15.0
        )

    def test_newest_first(self, client, session):
        session.get.return_value = response(payload=[
            version_payload("old", "1.0", date="2023-01-01T00:00:00Z"),
            version_payload("new", "2.0", date="2024-06-01T00:00:00Z"),
            version_payload("mid", "1.5", date="2023-06-01T00:00:00Z"),
        ])
        assert [v.id for v in client.query_versions("AABBCCDD")] == ["new", "mid", "old"]

    def test_second_identical_query_is_served_from_cache(self, client, session):
        session.get.return_value = response(payload=[version_payload("a", "1.0")])

        client.query_versions("AABBCCDD", "fabric", "1.20.4")
        client.query_versions("AABBCCDD", "fabric", "1.20.4")

        assert session.get.call_count == 1
        assert client.metrics["cache_hits"] == 1
        assert client.metrics["cache_misses"] == 1

    def test_invalidate_forces_new_request(self, client, session):
        session.get.return_value = response(payload=[version_payload("a", "1.0")])

        client.query_versions("AABBCCDD", "fabric", "1.20.4")
        client.invalidate_cache()
        client.query_versions("AABBCCDD", "fabric", "1.20.4")

        assert session.get.call_count == 2

    def test_invalidate_single_project(self, client, session):
        session.get.return_value = response(payload=[version_payload("a", "1.0")])
        client.query_versions("AABBCCDD")
        client.query_versions("EEFFGGHH")

        client.invalidate_cache("AABBCCDD")
        client.query_versions("AABBCCDD")
        client.query_versions("EEFFGGHH")

        assert session.get.call_count == 3

    def test_cache_ttl_expiry(self, session):
        now = [100.0]
        client = RegistryClient(session=session, rate_limit_ms=0, cache_ttl=60,
                                clock=lambda: now[0], sleep=lambda s: None)
        session.get.return_value = response(payload=[version_payload("a", "1.0")])

        client.query_versions("AABBCCDD")
        now[0] += 30
        client.query_versions("AABBCCDD")
        assert session.get.call_count == 1

        now[0] += 61
        client.query_versions("AABBCCDD")
        assert session.get.call_count == 2

    def test_latest_prefers_stable_over_newer_beta(self, client, session):
        session.get.return_value = response(payload=[
            version_payload("beta", "2.0-beta", date="2024-06-01T00:00:00Z", version_type="beta"),
            version_payload("stable", "1.9", date="2024-05-01T00:00:00Z"),
        ])
        latest = client.query_versions("AABBCCDD", "fabric", "1.20.4", latest_only=True)
        assert [v.id for v in latest] == ["stable"]

    def test_latest_tie_breaks_on_fewer_game_versions(self, client, session):
        session.get.return_value = response(payload=[
            version_payload("wide", "1.0", game_versions=["1.20.1", "1.20.2", "1.20.4"]),
            version_payload("narrow", "1.0+1.20.4", game_versions=["1.20.4"]),
        ])
        latest = client.query_versions("AABBCCDD", runtime_version="1.20.4", latest_only=True)
        assert latest[0].id == "narrow"

    def test_latest_without_runtime_version_is_first_stable(self, client, session):
        session.get.return_value = response(payload=[
            version_payload("alpha", "3.0-alpha", date="2024-07-01T00:00:00Z", version_type="alpha"),
            version_payload("stable", "2.0", date="2024-06-01T00:00:00Z"),
        ])
        assert client.query_versions("AABBCCDD", latest_only=True)[0].id == "stable"

    def test_latest_only_from_cache(self, client, session):
        session.get.return_value = response(payload=[version_payload("a", "1.0")])
        client.query_versions("AABBCCDD")
        assert client.query_versions("AABBCCDD", latest_only=True)[0].id == "a"
        assert session.get.call_count == 1


class TestErrors:
    def test_404_is_not_found_and_not_retried(self, client, session, sleeps):
        session.get.return_value = response(status=404)
        with pytest.raises(NotFoundError):
            client.query_versions("AABBCCDD")
        assert session.get.call_count == 1
        assert sleeps == []

    def test_other_4xx_not_retried(self, client, session):
        session.get.return_value = response(status=403)
        with pytest.raises(NetworkError) as info:
            client.get_project_info("AABBCCDD")
        assert info.value.status_code == 403
        assert session.get.call_count == 1

    def test_5xx_retried_with_exponential_backoff(self, client, session, sleeps):
        session.get.return_value = response(status=503)
        with pytest.raises(NetworkError):
            client.get_project_info("AABBCCDD")
        assert session.get.call_count == 4
        assert sleeps == [1.0, 2.0, 4.0]
        assert client.metrics["retry_attempts"] == 3

    def test_timeout_reported_as_network_timeout(self, client, session):
        session.get.side_effect = requests.Timeout("read timed out")
        with pytest.raises(NetworkTimeoutError) as info:
            client.get_project_info("AABBCCDD")
        assert "network may be slow" in str(info.value)
        assert info.value.kind == "network_timeout"

    def test_recovers_after_connection_error(self, client, session):
        session.get.side_effect = [
            requests.ConnectionError("refused"),
            response(payload={"id": "AABBCCDD", "title": "Sodium"}),
        ]
        assert client.get_project_info("AABBCCDD").title == "Sodium"
        assert session.get.call_count == 2

    def test_invalid_json(self, client, session):
        bad = response()
        bad.json.side_effect = ValueError("no json")
        session.get.return_value = bad
        with pytest.raises(NetworkError):
            RegistryClient(session=session, rate_limit_ms=0, max_retries=0).get_project_info("AABBCCDD")


class TestVersionDetail:
    def test_fetches_version(self, client, session):
        session.get.return_value = response(payload=version_payload("v1", "1.0"))
        version = client.get_version_detail("v1")
        assert version.version_number == "1.0"
        assert version.fallback_from_404 is False

    def test_404_falls_back_to_latest_when_project_known(self, client, session):
        session.get.side_effect = [
            response(status=404),
            response(payload=[version_payload("v2", "2.0")]),
        ]
        version = client.get_version_detail("gone", project_id="AABBCCDD", runtime_version="1.20.4")
        assert version.id == "v2"
        assert version.fallback_from_404 is True
        assert version.original_version_id == "gone"

    def test_404_without_project_raises(self, client, session):
        session.get.return_value = response(status=404)
        with pytest.raises(NotFoundError):
            client.get_version_detail("gone")

    def test_download_url(self, client, session):
        session.get.return_value = response(payload=[version_payload("v1", "1.0")])
        assert client.get_download_url("AABBCCDD", "1.20.4", "fabric") == "https://cdn.example/v1.jar"


class TestProjects:
    def test_resolve_dependencies_marks_unknown(self, client, session):
        session.get.side_effect = [
            response(payload={"id": "P7dR8mSH", "title": "Fabric API"}),
            response(status=404),
        ]
        resolved = client.resolve_dependencies([
            {"project_id": "P7dR8mSH", "dependency_type": "required"},
            {"project_id": "optional1", "dependency_type": "optional"},
            {"project_id": "missing1", "dependency_type": "required"},
        ])
        assert resolved == [
            {"project_id": "P7dR8mSH", "name": "Fabric API", "dependency_type": "required"},
            {"project_id": "missing1", "name": "Unknown Mod", "dependency_type": "required"},
        ]

    def test_search_facets(self, client, session):
        session.get.return_value = response(payload={"hits": [{"project_id": "a"}], "total_hits": 42})

        hits, total = client.search("sodium", loader="fabric-loader", runtime_version="1.20.4",
                                    side="client", offset=20, limit=10, index="downloads")

        assert total == 42
        assert hits == [{"project_id": "a"}]
        params = session.get.call_args.kwargs["params"]
        assert json.loads(params["facets"]) == [
            ["project_type:mod"],
            ["categories:fabric"],
            ["versions:1.20.4"],
            ["client_side:required", "client_side:optional"],
        ]
        assert params["offset"] == 20
        assert params["index"] == "downloads"


class TestRateLimit:
    def test_concurrent_calls_are_spaced(self, session):
        delay_ms = 50
        calls = 5
        client = RegistryClient(session=session, rate_limit_ms=delay_ms)
        session.get.return_value = response(payload={"id": "AABBCCDD", "title": "Sodium"})

        threads = [threading.Thread(target=client.get_project_info, args=("AABBCCDD",)) for _ in range(calls)]
        started = time.monotonic()
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        elapsed = time.monotonic() - started

        assert session.get.call_count == calls
        assert elapsed >= (calls - 1) * delay_ms / 1000.0 - 0.005

"""
Modrinth registry client

Every outbound call goes through one rate-limit gate per client instance and
is retried with exponential backoff. Version queries are cached until the
cache is invalidated (or the optional TTL expires).
"""

import json
import threading
import time
from dataclasses import replace
from typing import Callable, Dict, List, Optional, Tuple, Union

import requests

from ..compat.loaders import normalize_loader
from ...utils.config import EngineConfig
from .errors import (
    InvalidInputError,
    ModSyncError,
    NetworkError,
    NetworkTimeoutError,
    NotFoundError
)
from .models import ProjectInfo, VersionRecord

SEARCH_INDEXES = ("relevance", "downloads", "follows", "newest", "updated")


class RegistryClient:
    """Handles requests to the Modrinth API for mods"""

    BASE_URL = "https://api.modrinth.com/v2"
    USER_AGENT = "modsync/1.0.0 (mod version resolution engine)"

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        base_url: Optional[str] = None,
        user_agent: Optional[str] = None,
        rate_limit_ms: int = 500,
        timeout: float = 15.0,
        max_retries: int = 3,
        retry_base_delay: float = 1.0,
        cache_ttl: Optional[float] = None,
        log_callback: Optional[Callable[[str], None]] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep
    ):
        """
        Initialize the client.

        Args:
            session: requests.Session to use (a new one is created if None)
            base_url: Registry API root
            user_agent: User-Agent header sent with every request
            rate_limit_ms: Minimum spacing between two outbound calls
            timeout: Per-request timeout in seconds
            max_retries: Retries after the first attempt
            retry_base_delay: Backoff base in seconds (delay = base * 2^attempt)
            cache_ttl: Version cache lifetime in seconds, None = until invalidated
            log_callback: Optional callback for logging messages
            clock: Monotonic clock, injectable for tests
            sleep: Sleep function, injectable for tests
        """
        self.base_url = (base_url or self.BASE_URL).rstrip("/")
        self.session = session or requests.Session()
        self.session.headers.update({
            "User-Agent": user_agent or self.USER_AGENT,
            "Accept": "application/json"
        })
        self.rate_limit_ms = rate_limit_ms
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self.cache_ttl = cache_ttl
        self.log_callback = log_callback
        self._clock = clock
        self._sleep = sleep

        self._gate = threading.Lock()
        self._last_request: Optional[float] = None
        self._cache: Dict[Tuple[str, str, str], Tuple[float, List[VersionRecord]]] = {}
        self._metrics = {
            "api_requests": 0,
            "cache_hits": 0,
            "cache_misses": 0,
            "retry_attempts": 0,
            "rate_limit_delays": 0
        }

    @classmethod
    def from_config(
        cls,
        config: EngineConfig,
        session: Optional[requests.Session] = None,
        log_callback: Optional[Callable[[str], None]] = None
    ) -> "RegistryClient":
        """Builds a client from an EngineConfig"""
        return cls(
            session=session,
            base_url=config.api_base_url,
            user_agent=config.user_agent,
            rate_limit_ms=config.rate_limit_ms,
            timeout=config.request_timeout,
            max_retries=config.max_retries,
            retry_base_delay=config.retry_base_delay,
            cache_ttl=config.cache_ttl,
            log_callback=log_callback
        )

    def _log(self, message: str):
        """Log message via callback"""
        if self.log_callback:
            self.log_callback(message)

    @property
    def metrics(self) -> Dict[str, int]:
        """Snapshot of the request/cache counters"""
        return dict(self._metrics)

    # ==================== TRANSPORT ====================

    def _rate_limit(self):
        """Blocks until rate_limit_ms have passed since the previous call started"""
        with self._gate:
            if self._last_request is not None:
                elapsed = self._clock() - self._last_request
                wait = self.rate_limit_ms / 1000.0 - elapsed
                if wait > 0:
                    self._metrics["rate_limit_delays"] += 1
                    self._sleep(wait)
            self._last_request = self._clock()

    def _request_once(self, url: str, params: Optional[Dict], description: str):
        self._rate_limit()
        self._metrics["api_requests"] += 1

        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
        except requests.Timeout as e:
            raise NetworkTimeoutError(
                f"API timeout for {description} - network may be slow or API unavailable",
                cause=e
            )
        except requests.RequestException as e:
            raise NetworkError(f"Network error for {description}: {e}", cause=e)

        status = response.status_code
        if status == 404:
            raise NotFoundError(f"Not found on Modrinth (404): {description}")
        if status >= 400:
            raise NetworkError(f"Modrinth API error ({status}) for {description}", status_code=status)

        try:
            return response.json()
        except ValueError as e:
            raise NetworkError(f"Invalid JSON from Modrinth for {description}", cause=e)

    @staticmethod
    def _is_retryable(error: ModSyncError) -> bool:
        if not isinstance(error, NetworkError):
            return False
        # 4xx other than 429 will not heal by retrying
        status = error.status_code
        if status is not None and 400 <= status < 500 and status != 429:
            return False
        return True

    def _request_json(self, path: str, params: Optional[Dict] = None, description: str = ""):
        """
        GET a registry endpoint with rate limiting and retry/backoff

        Args:
            path: Endpoint path (ej: "/project/AANobbMI/version")
            params: Optional query parameters
            description: Human-readable target used in error messages

        Returns:
            Decoded JSON payload

        Raises:
            NotFoundError: 404, never retried
            NetworkTimeoutError: Timed out on every attempt
            NetworkError: Any other failure
        """
        url = f"{self.base_url}{path}"
        description = description or path
        last_error: Optional[ModSyncError] = None

        for attempt in range(self.max_retries + 1):
            try:
                result = self._request_once(url, params, description)
                if attempt > 0:
                    self._log(f"[Registry] {description} succeeded after {attempt} retr{'y' if attempt == 1 else 'ies'}\n")
                return result
            except ModSyncError as e:
                last_error = e
                if not self._is_retryable(e):
                    raise
                if attempt == self.max_retries:
                    break
                self._metrics["retry_attempts"] += 1
                delay = self.retry_base_delay * (2 ** attempt)
                self._log(f"[Registry] {e} - retrying in {delay:.1f}s ({attempt + 1}/{self.max_retries})\n")
                self._sleep(delay)

        self._log(f"[Registry] {description} failed after {self.max_retries + 1} attempts\n")
        raise last_error

    # ==================== VERSION CACHE ====================

    def _cache_get(self, key: Tuple[str, str, str]) -> Optional[List[VersionRecord]]:
        entry = self._cache.get(key)
        if entry is None:
            return None
        stored_at, versions = entry
        if self.cache_ttl is not None and self._clock() - stored_at > self.cache_ttl:
            self._cache.pop(key, None)
            return None
        return versions

    def invalidate_cache(self, project_id: Optional[str] = None):
        """
        Drops cached version lists

        Args:
            project_id: Only drop entries of this project (None = everything)
        """
        if project_id is None:
            self._cache.clear()
            self._log("[Registry] Version cache cleared\n")
            return
        for key in [k for k in list(self._cache) if k[0] == project_id]:
            self._cache.pop(key, None)
        self._log(f"[Registry] Version cache cleared for {project_id}\n")

    # ==================== VERSIONS ====================

    @staticmethod
    def _is_eligible(version: VersionRecord, loader: str, runtime_version: str) -> bool:
        if loader:
            loaders = {normalize_loader(l) for l in version.loaders}
            if loader not in loaders:
                return False
        if runtime_version and runtime_version not in version.game_versions:
            return False
        return True

    @staticmethod
    def _select_latest(versions: List[VersionRecord], runtime_version: Optional[str]) -> List[VersionRecord]:
        """Picks the single best candidate from a newest-first list"""
        if not versions:
            return []

        if runtime_version:
            def rank(version: VersionRecord):
                try:
                    position = version.game_versions.index(runtime_version)
                except ValueError:
                    position = len(version.game_versions)
                return (
                    0 if version.is_stable else 1,
                    -version.published_at.timestamp(),
                    len(version.game_versions),
                    position
                )
            return [min(versions, key=rank)]

        for version in versions:
            if version.is_stable:
                return [version]
        return [versions[0]]

    def query_versions(
        self,
        project_id: str,
        loader: Optional[str] = None,
        runtime_version: Optional[str] = None,
        latest_only: bool = False
    ) -> List[VersionRecord]:
        """
        Gets the versions of a project available for a loader/runtime version

        Args:
            project_id: Modrinth project ID
            loader: Loader name (ej: "fabric"), aliases accepted
            runtime_version: Minecraft version, exact membership (ej: "1.20.1")
            latest_only: Return only the best candidate

        Returns:
            Versions newest first (at most one when latest_only)
        """
        if not project_id:
            raise InvalidInputError("Project ID is required")

        loader_key = normalize_loader(loader) or ""
        runtime_key = runtime_version or ""
        key = (project_id, loader_key, runtime_key)

        versions = self._cache_get(key)
        if versions is not None:
            self._metrics["cache_hits"] += 1
            self._log(f"[Registry] Cache hit for {project_id}\n")
        else:
            self._metrics["cache_misses"] += 1
            data = self._request_json(
                f"/project/{project_id}/version",
                description=f"project {project_id} versions"
            )
            if not isinstance(data, list):
                raise NetworkError(f"Unexpected versions payload for {project_id}")

            versions = [
                v for v in (VersionRecord.from_api(item) for item in data if isinstance(item, dict))
                if self._is_eligible(v, loader_key, runtime_key)
            ]
            versions.sort(key=lambda v: v.published_at, reverse=True)
            self._cache[key] = (self._clock(), versions)
            self._log(f"[Registry] {len(versions)} version(s) of {project_id} match "
                      f"{loader_key or 'any loader'}/{runtime_key or 'any version'}\n")

        if latest_only:
            return self._select_latest(versions, runtime_version)
        return list(versions)

    def get_latest_version_info(
        self,
        project_id: str,
        runtime_version: Optional[str] = None,
        loader: Optional[str] = None
    ) -> Optional[VersionRecord]:
        """Newest version matching the filters, None if there is none"""
        try:
            versions = self.query_versions(project_id, loader, runtime_version)
        except NotFoundError:
            return None
        return versions[0] if versions else None

    def get_version_detail(
        self,
        version_id: Optional[str],
        project_id: Optional[str] = None,
        runtime_version: Optional[str] = None,
        loader: Optional[str] = None
    ) -> VersionRecord:
        """
        Gets one version by ID

        When the version is gone (404) and the project is known, falls back
        to the latest matching version, flagged with fallback_from_404.

        Args:
            version_id: Modrinth version ID (None = latest of project_id)
            project_id: Optional project ID enabling the fallback
            runtime_version: Filter used by the fallback
            loader: Filter used by the fallback

        Returns:
            VersionRecord
        """
        if not version_id:
            if not project_id:
                raise InvalidInputError("Version ID or project ID is required")
            latest = self.get_latest_version_info(project_id, runtime_version, loader)
            if latest is None:
                raise NotFoundError(f"No matching versions found for {project_id}")
            return latest

        try:
            data = self._request_json(f"/version/{version_id}", description=f"version {version_id}")
        except NotFoundError:
            if not project_id:
                raise
            self._log(f"[Registry] Version {version_id} returned 404, falling back to latest\n")
            latest = self.get_latest_version_info(project_id, runtime_version, loader)
            if latest is None:
                raise NotFoundError(
                    f"Modrinth version not found (404) and no fallback for {project_id}"
                )
            return replace(latest, fallback_from_404=True, original_version_id=version_id)

        if not isinstance(data, dict):
            raise NetworkError(f"Unexpected version payload for {version_id}")
        return VersionRecord.from_api(data)

    def get_download_url(
        self,
        project_id: str,
        runtime_version: Optional[str] = None,
        loader: Optional[str] = None
    ) -> Optional[str]:
        """Primary file URL of the newest matching version"""
        latest = self.get_latest_version_info(project_id, runtime_version, loader)
        if latest is None:
            return None
        primary = latest.primary_file()
        return primary.url if primary else None

    # ==================== PROJECTS ====================

    def get_project_info(self, project_id: str) -> ProjectInfo:
        """
        Gets detailed information about a project

        Args:
            project_id: Project ID or slug

        Returns:
            ProjectInfo
        """
        if not project_id:
            raise InvalidInputError("Project ID is required")
        data = self._request_json(f"/project/{project_id}", description=f"project {project_id}")
        if not isinstance(data, dict):
            raise NetworkError(f"Unexpected project payload for {project_id}")
        return ProjectInfo.from_api(data)

    def resolve_dependencies(self, dependencies: Union[VersionRecord, List[Dict]]) -> List[Dict]:
        """
        Resolves the names of the required dependencies of a version

        Args:
            dependencies: VersionRecord or its raw dependency list

        Returns:
            List of {project_id, name, dependency_type}
        """
        if isinstance(dependencies, VersionRecord):
            dependencies = dependencies.dependencies

        resolved = []
        for dep in dependencies or []:
            project_id = dep.get("project_id")
            if not project_id or dep.get("dependency_type") != "required":
                continue
            try:
                name = self.get_project_info(project_id).title or project_id
            except ModSyncError as e:
                self._log(f"[Registry] Could not resolve dependency {project_id}: {e}\n")
                name = "Unknown Mod"
            resolved.append({
                "project_id": project_id,
                "name": name,
                "dependency_type": "required"
            })
        return resolved

    def search(
        self,
        query: str = "",
        loader: Optional[str] = None,
        runtime_version: Optional[str] = None,
        side: Optional[str] = None,
        offset: int = 0,
        limit: int = 20,
        index: str = "relevance",
        project_type: str = "mod"
    ) -> Tuple[List[Dict], int]:
        """
        Searches projects on Modrinth

        Args:
            query: Search text
            loader: Loader facet (ej: "fabric")
            runtime_version: Minecraft version facet
            side: "client", "server" or "both" to require support on that side
            offset: Number of results to skip (for pagination)
            limit: Maximum number of results per page
            index: Sort order (relevance, downloads, follows, newest, updated)
            project_type: Project type facet

        Returns:
            Tuple of (list of hits, total results)
        """
        facets: List[List[str]] = []
        if project_type:
            facets.append([f"project_type:{project_type}"])
        loader_name = normalize_loader(loader)
        if loader_name:
            facets.append([f"categories:{loader_name}"])
        if runtime_version:
            facets.append([f"versions:{runtime_version}"])
        if side in ("client", "both"):
            facets.append(["client_side:required", "client_side:optional"])
        if side in ("server", "both"):
            facets.append(["server_side:required", "server_side:optional"])

        params = {
            "query": query,
            "offset": max(0, int(offset)),
            "limit": max(1, int(limit)),
            "index": index if index in SEARCH_INDEXES else "relevance",
            "facets": json.dumps(facets)
        }
        data = self._request_json("/search", params=params, description=f"search '{query}'")
        if not isinstance(data, dict):
            raise NetworkError("Unexpected search payload")
        return data.get("hits", []), int(data.get("total_hits", 0))

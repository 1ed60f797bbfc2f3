"""Versioned offline cache for the app shell, ML model files and API responses.

Each `ResourceCache` is one cache generation, named after its version tag::

    INSTALLING -> INSTALLED -> ACTIVE -> SUPERSEDED
         \\-> REDUNDANT (critical asset failed)

`CacheController` hosts the generations: it decides which one serves requests and
answers the page's control messages (SKIP_WAITING, GET_VERSION, CLEAR_CACHE).
"""

from __future__ import annotations

import asyncio
import json
import time

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Union
from urllib.parse import urljoin

import httpx

from homeface import config as app_config
from homeface.cache.routing import Policy, RoutingRule, build_rules, is_navigation, resolve_policy
from homeface.cache.storage import CachedEntry
from homeface.errors import InstallError, NetworkError, StateError, StorageError, ValidationError
from homeface.utils.log import get_logger

logger = get_logger(__name__)


@dataclass
class CacheConfig:
    version: str = app_config.APP_VERSION
    base_url: str = "http://localhost:8000/"
    cache_prefix: str = app_config.CACHE_PREFIX
    # Never purged on generation rotation.
    data_cache_name: str = app_config.DATA_CACHE_NAME
    critical_assets: List[str] = field(default_factory=lambda: list(app_config.CRITICAL_ASSETS))
    optional_assets: List[str] = field(default_factory=lambda: list(app_config.OPTIONAL_ASSETS))
    shell_asset: str = "index.html"
    dynamic_data_pattern: str = app_config.DYNAMIC_DATA_PATTERN
    model_asset_pattern: str = app_config.MODEL_ASSET_PATTERN
    static_ttl_seconds: float = app_config.STATIC_TTL_SECONDS

    @property
    def asset_cache_name(self) -> str:
        return f"{self.cache_prefix}{self.version}"

    def resolve(self, asset: str) -> str:
        return urljoin(self.base_url, asset)


class GenerationState(str, Enum):
    INSTALLING = "installing"
    INSTALLED = "installed"
    ACTIVE = "active"
    SUPERSEDED = "superseded"
    REDUNDANT = "redundant"


def offline_response(request: httpx.Request, as_json: bool = False) -> httpx.Response:
    if as_json:
        body = json.dumps({"error": "offline", "message": "Network unavailable and no cached copy"})
        return httpx.Response(503, headers={"content-type": "application/json"}, content=body, request=request)
    return httpx.Response(
        503, headers={"content-type": "text/plain"}, content=b"Service Unavailable", request=request
    )


class ResourceCache:
    def __init__(
        self,
        config: CacheConfig,
        storage,
        client: httpx.AsyncClient,
        clock: Callable[[], float] = time.time,
        rules: Optional[List[RoutingRule]] = None,
    ):
        self.config = config
        self.storage = storage
        self.client = client
        self.clock = clock
        self.rules = rules if rules is not None else build_rules(config.dynamic_data_pattern, config.model_asset_pattern)
        self.state: Optional[GenerationState] = None

    @property
    def version(self) -> str:
        return self.config.version

    async def _network(self, request: httpx.Request) -> httpx.Response:
        try:
            return await self.client.send(request)
        except httpx.HTTPError as e:
            raise NetworkError(f"{request.method} {request.url} failed: {e}") from e

    async def _fetch_asset(self, url: str) -> httpx.Response:
        response = await self._network(self.client.build_request("GET", url))
        if not response.is_success:
            raise NetworkError(f"GET {url} returned HTTP {response.status_code}")
        return response

    def _store(self, bucket_name: str, url: str, response: httpx.Response) -> None:
        try:
            self.storage.open(bucket_name).put(CachedEntry.from_response(url, response, self.clock()))
        except StorageError as e:
            logger.warning(f"Not caching {url}: {e}")

    def _lookup(self, bucket_name: str, url: str) -> Optional[CachedEntry]:
        try:
            if not self.storage.has(bucket_name):
                return None
            return self.storage.open(bucket_name).match(url)
        except StorageError as e:
            logger.warning(f"Cache lookup for {url} failed: {e}")
            return None

    async def install(self) -> None:
        """Fetch the app shell as one batch, then optional assets best-effort.

        If any critical asset fails nothing is stored and InstallError is raised.
        """
        if self.state is not None:
            raise StateError(f"Generation {self.version} already {self.state.value}")
        self.state = GenerationState.INSTALLING
        urls = [self.config.resolve(a) for a in self.config.critical_assets]
        logger.info(f"Installing cache {self.config.asset_cache_name} ({len(urls)} critical assets)")

        results = await asyncio.gather(*(self._fetch_asset(u) for u in urls), return_exceptions=True)
        failures = [(u, r) for u, r in zip(urls, results) if isinstance(r, BaseException)]
        if failures:
            self.state = GenerationState.REDUNDANT
            for url, err in failures:
                logger.error(f"Critical asset failed: {url}: {err}")
            raise InstallError(
                f"Cache {self.version} not installed: {len(failures)} of {len(urls)} app files could not be downloaded"
            )

        name = self.config.asset_cache_name
        created = not self.storage.has(name)
        stored_urls: List[str] = []
        try:
            bucket = self.storage.open(name)
            now = self.clock()
            for url, response in zip(urls, results):
                bucket.put(CachedEntry.from_response(url, response, now))
                stored_urls.append(url)
        except StorageError as e:
            self.state = GenerationState.REDUNDANT
            self._rollback(name, created, stored_urls)
            raise InstallError(f"Cache {self.version} not installed: {e}") from e

        optional = [self.config.resolve(a) for a in self.config.optional_assets]
        opt_results = await asyncio.gather(*(self._fetch_asset(u) for u in optional), return_exceptions=True)
        stored = 0
        for url, r in zip(optional, opt_results):
            if isinstance(r, BaseException):
                logger.warning(f"Optional asset skipped: {url}: {r}")
                continue
            self._store(self.config.asset_cache_name, url, r)
            stored += 1

        self.state = GenerationState.INSTALLED
        logger.info(f"Cache {self.version} installed ({len(urls)} critical, {stored}/{len(optional)} optional)")

    def _rollback(self, name: str, created: bool, stored_urls: List[str]) -> None:
        """Undo a partially stored critical set."""
        try:
            if created:
                self.storage.delete(name)
                return
            bucket = self.storage.open(name)
            for url in stored_urls:
                bucket.delete(url)
        except (StorageError, OSError) as e:
            logger.error(f"Partial cache {name} could not be removed: {e}")

    async def activate(self) -> List[str]:
        """Delete every bucket except this generation's and the data cache."""
        if self.state != GenerationState.INSTALLED:
            state = self.state.value if self.state else "not installed"
            raise StateError(f"Cannot activate cache {self.version}: {state}")
        keep = {self.config.asset_cache_name, self.config.data_cache_name}
        deleted = []
        for name in self.storage.keys():
            if name in keep:
                continue
            try:
                if self.storage.delete(name):
                    deleted.append(name)
            except StorageError as e:
                logger.warning(f"Old cache {name} not deleted: {e}")
        self.state = GenerationState.ACTIVE
        if deleted:
            logger.info(f"Cache {self.version} active, removed {', '.join(deleted)}")
        else:
            logger.info(f"Cache {self.version} active")
        return deleted

    def mark_superseded(self) -> None:
        self.state = GenerationState.SUPERSEDED

    async def fetch(self, request: httpx.Request) -> httpx.Response:
        policy = resolve_policy(request, self.rules)
        if policy == Policy.PASSTHROUGH:
            return await self._network(request)
        if policy == Policy.NETWORK_FIRST:
            return await self._network_first(request)
        if policy == Policy.CACHE_FIRST:
            return await self._cache_first(request)
        return await self._cache_first_ttl(request)

    async def _network_first(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        try:
            response = await self._network(request)
        except NetworkError as e:
            cached = self._lookup(self.config.data_cache_name, url)
            if cached is not None:
                logger.info(f"Offline, serving cached data for {url}")
                return cached.to_response(request)
            logger.warning(f"Offline and nothing cached for {url}: {e}")
            return offline_response(request, as_json=True)
        if response.is_success:
            self._store(self.config.data_cache_name, url, response)
        return response

    async def _cache_first(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        cached = self._lookup(self.config.asset_cache_name, url)
        if cached is not None:
            return cached.to_response(request)
        # The model is required: a failure here propagates.
        response = await self._network(request)
        if response.is_success:
            self._store(self.config.asset_cache_name, url, response)
        return response

    async def _cache_first_ttl(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        cached = self._lookup(self.config.asset_cache_name, url)
        if cached is not None and self._is_fresh(cached):
            return cached.to_response(request)

        try:
            response = await self._network(request)
        except NetworkError as e:
            if cached is not None:
                logger.info(f"Offline, serving stale {url}")
                return cached.to_response(request)
            if is_navigation(request):
                shell = self._lookup(self.config.asset_cache_name, self.config.resolve(self.config.shell_asset))
                if shell is not None:
                    return shell.to_response(request)
            logger.warning(f"Offline and nothing cached for {url}: {e}")
            return offline_response(request)

        if response.is_success:
            self._store(self.config.asset_cache_name, url, response)
        return response

    def _is_fresh(self, entry: CachedEntry) -> bool:
        cached_at = entry.cached_at
        if cached_at is None:
            return False
        return (self.clock() - cached_at) < float(self.config.static_ttl_seconds)


Message = Union[str, Mapping[str, Any]]


class CacheController:
    """Holds the active generation and at most one waiting generation."""

    def __init__(self, storage, client: httpx.AsyncClient):
        self.storage = storage
        self.client = client
        self.active: Optional[ResourceCache] = None
        self.waiting: Optional[ResourceCache] = None
        self._transition = asyncio.Lock()

    @property
    def version(self) -> Optional[str]:
        return self.active.version if self.active is not None else None

    async def register(self, generation: ResourceCache) -> GenerationState:
        """Install `generation`; activate it right away if nothing is active yet."""
        await generation.install()
        if self.active is None:
            await self._activate(generation)
        else:
            if self.waiting is not None and self.waiting is not generation:
                self.waiting.state = GenerationState.REDUNDANT
            self.waiting = generation
            logger.info(f"Cache {generation.version} waiting (active: {self.active.version})")
        return generation.state

    async def skip_waiting(self) -> bool:
        if self.waiting is None:
            return False
        await self._activate(self.waiting)
        return True

    async def _activate(self, generation: ResourceCache) -> None:
        # Requests keep going to the old generation until old buckets are gone.
        async with self._transition:
            await generation.activate()
            previous = self.active
            self.active = generation
            if self.waiting is generation:
                self.waiting = None
            if previous is not None and previous is not generation:
                previous.mark_superseded()

    async def fetch(self, request: httpx.Request) -> httpx.Response:
        generation = self.active
        if generation is None:
            try:
                return await self.client.send(request)
            except httpx.HTTPError as e:
                raise NetworkError(f"{request.method} {request.url} failed: {e}") from e
        return await generation.fetch(request)

    def clear_all(self) -> bool:
        ok = True
        for name in self.storage.keys():
            try:
                self.storage.delete(name)
            except StorageError as e:
                logger.error(f"Cache {name} could not be cleared: {e}")
                ok = False
        if ok:
            logger.info("All caches cleared")
        return ok

    async def handle_message(self, message: Message) -> Dict[str, Any]:
        kind = message if isinstance(message, str) else message.get("type")
        if kind == "SKIP_WAITING":
            return {"type": kind, "activated": await self.skip_waiting(), "version": self.version}
        if kind == "GET_VERSION":
            return {"type": kind, "version": self.version}
        if kind == "CLEAR_CACHE":
            return {"type": kind, "success": self.clear_all()}
        raise ValidationError(f"Unknown cache message: {kind!r}")

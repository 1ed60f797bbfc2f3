"""Command-line access to the offline asset cache (install / version / clear)."""

from __future__ import annotations

import argparse
import asyncio
import sys

from pathlib import Path

import httpx

from homeface.cache.engine import CacheConfig, CacheController, ResourceCache
from homeface.cache.storage import DirectoryCacheStorage
from homeface.config import APP_VERSION, CACHE_PREFIX
from homeface.errors import HomefaceError
from homeface.utils.log import get_logger, set_verbosity

logger = get_logger(__name__)


async def _install(args) -> int:
    storage = DirectoryCacheStorage(Path(args.cache_dir))
    config = CacheConfig(version=args.version, base_url=args.base_url)
    async with httpx.AsyncClient(timeout=args.timeout, follow_redirects=True) as client:
        controller = CacheController(storage, client)
        await controller.register(ResourceCache(config, storage, client))
        result = await controller.handle_message("GET_VERSION")
    logger.info(f"Active cache version: {result['version']}")
    return 0


def _versions(args) -> int:
    storage = DirectoryCacheStorage(Path(args.cache_dir))
    names = [n for n in storage.keys() if n.startswith(CACHE_PREFIX)]
    if not names:
        logger.info("No caches present")
    for name in names:
        logger.info(f"{name}: {len(storage.open(name).keys())} entries")
    return 0


def _clear(args) -> int:
    storage = DirectoryCacheStorage(Path(args.cache_dir))
    ok = CacheController(storage, client=None).clear_all()
    return 0 if ok else 1


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Offline asset cache")
    parser.add_argument("--cache-dir", default="data/cache", help="Cache storage directory")
    parser.add_argument("--verbose", "-v", action="store_true")
    sub = parser.add_subparsers(dest="command", required=True)

    inst = sub.add_parser("install", help="Install and activate a cache generation")
    inst.add_argument("--version", default=APP_VERSION, help="Generation tag")
    inst.add_argument("--base-url", required=True, help="Where the app shell is served from")
    inst.add_argument("--timeout", type=float, default=30.0)

    sub.add_parser("versions", help="List cache buckets")
    sub.add_parser("clear", help="Delete every cache bucket")

    args = parser.parse_args(argv)
    set_verbosity(args.verbose)
    try:
        if args.command == "install":
            return asyncio.run(_install(args))
        if args.command == "versions":
            return _versions(args)
        return _clear(args)
    except HomefaceError as e:
        logger.error(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())

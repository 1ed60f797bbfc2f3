"""Request routing for the asset cache.

Routing is data: an ordered list of (predicate, policy) rules, first match wins.
Non-GET requests never reach the table.
"""

from __future__ import annotations

import re

from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Sequence

import httpx


class Policy(str, Enum):
    PASSTHROUGH = "passthrough"
    NETWORK_FIRST = "network_first"
    CACHE_FIRST = "cache_first"
    CACHE_FIRST_TTL = "cache_first_ttl"


@dataclass(frozen=True)
class RoutingRule:
    name: str
    predicate: Callable[[httpx.Request], bool]
    policy: Policy


def path_matches(pattern: str) -> Callable[[httpx.Request], bool]:
    regex = re.compile(pattern)

    def _predicate(request: httpx.Request) -> bool:
        return regex.search(request.url.path) is not None

    return _predicate


def _any_request(request: httpx.Request) -> bool:
    return True


def build_rules(dynamic_data_pattern: str, model_asset_pattern: str) -> List[RoutingRule]:
    return [
        RoutingRule("dynamic-data", path_matches(dynamic_data_pattern), Policy.NETWORK_FIRST),
        RoutingRule("model-asset", path_matches(model_asset_pattern), Policy.CACHE_FIRST),
        RoutingRule("static-asset", _any_request, Policy.CACHE_FIRST_TTL),
    ]


def resolve_policy(request: httpx.Request, rules: Sequence[RoutingRule]) -> Policy:
    if request.method.upper() != "GET":
        return Policy.PASSTHROUGH
    for rule in rules:
        if rule.predicate(request):
            return rule.policy
    return Policy.PASSTHROUGH


def is_navigation(request: httpx.Request) -> bool:
    """Top-level page load: `Sec-Fetch-Mode: navigate`, or a GET that accepts HTML."""
    if request.headers.get("sec-fetch-mode", "").lower() == "navigate":
        return True
    return request.method.upper() == "GET" and "text/html" in request.headers.get("accept", "")

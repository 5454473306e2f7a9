"""Response caching middleware backed by the two-tier cache.

Serves cached JSON for matching GET/HEAD requests and stores fresh 2xx
JSON responses on a miss. Responses carry observability headers:
- X-Cache: HIT or MISS
- X-Cache-TTL: seconds the cached copy remains valid
- X-Cache-Tags: comma-separated invalidation tags

Rules are matched by path prefix; the first matching rule wins. Requests
carrying a real-time query parameter (refresh, force, live, realtime)
always reach the handler.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

import orjson
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from engageiq.cache.keys import ANONYMOUS, CacheKeys
from engageiq.cache.service import CacheService

REALTIME_PARAMS = ("refresh", "force", "live", "realtime")
MUTATING_METHODS = ("POST", "PUT", "PATCH", "DELETE")
USER_HEADER = "X-User-Id"

STRATEGY_TTLS = {"aggressive": 1800, "moderate": 600, "light": 300}
ANALYTICS_TTL = 1800
SOCIAL_TTL = 300
USER_TTL = 600

KeyBuilder = Callable[[Request, str | None], str | None]


def request_user_id(request: Request) -> str | None:
    """Caller identity set by the authentication layer, if any."""
    user_id = getattr(request.state, "user_id", None)
    if user_id is not None:
        return str(user_id)
    return request.headers.get(USER_HEADER)


def has_realtime_params(request: Request) -> bool:
    return any(param in request.query_params for param in REALTIME_PARAMS)


@dataclass(frozen=True)
class CacheRule:
    """Which requests to cache, for how long and under which tags."""

    path_prefix: str
    ttl: int = 300
    tags: tuple[str, ...] = ()
    key_builder: KeyBuilder | None = None
    condition: Callable[[Request], bool] | None = None

    def matches(self, path: str) -> bool:
        return path.startswith(self.path_prefix)

    def build_key(self, request: Request, user_id: str | None) -> str | None:
        """Cache key for the request, or None to skip caching."""
        if self.key_builder is not None:
            return self.key_builder(request, user_id)
        return CacheKeys.request(request.url.path, user_id, request.query_params.multi_items())


# -----------------------------------------------------------------------------
# Rule presets
# -----------------------------------------------------------------------------


def smart_rule(
    path_prefix: str, strategy: str = "moderate", endpoint: str | None = None
) -> CacheRule:
    """TTL by strategy: aggressive 30 min, moderate 10 min, light 5 min."""

    def key(request: Request, user_id: str | None) -> str:
        base = endpoint or request.url.path
        return CacheKeys.request(base, user_id, request.query_params.multi_items())

    return CacheRule(
        path_prefix=path_prefix,
        ttl=STRATEGY_TTLS.get(strategy, STRATEGY_TTLS["moderate"]),
        tags=(strategy,),
        key_builder=key,
    )


def analytics_rule(path_prefix: str) -> CacheRule:
    """Analytics aggregates keyed by platform and date range, 30 min."""

    def key(request: Request, user_id: str | None) -> str:
        query = request.query_params
        return CacheKeys.analytics(
            user_id, query.get("platform"), query.get("startDate"), query.get("endDate")
        )

    return CacheRule(
        path_prefix=path_prefix, ttl=ANALYTICS_TTL, tags=("analytics",), key_builder=key
    )


def social_rule(path_prefix: str) -> CacheRule:
    """Short-lived platform data keyed by platform and action, 5 min."""

    def key(request: Request, user_id: str | None) -> str:
        platform = request.path_params.get("platform") or request.query_params.get("platform")
        action = request.url.path.rstrip("/").rsplit("/", 1)[-1] or "unknown"
        return CacheKeys.social(str(platform or "all"), action, user_id)

    return CacheRule(path_prefix=path_prefix, ttl=SOCIAL_TTL, tags=("social",), key_builder=key)


def user_rule(path_prefix: str) -> CacheRule:
    """Per-user responses, 10 min; anonymous requests are not cached."""

    def key(request: Request, user_id: str | None) -> str | None:
        if user_id is None:
            return None
        return CacheKeys.user(user_id, request.url.path, request.query_params.multi_items())

    return CacheRule(
        path_prefix=path_prefix,
        ttl=USER_TTL,
        key_builder=key,
        condition=lambda request: request_user_id(request) is not None,
    )


def tag_rule(path_prefix: str, tags: Sequence[str], ttl: int = 300) -> CacheRule:
    """Responses grouped under ``tags`` for tag-based invalidation."""

    def key(request: Request, user_id: str | None) -> str:
        return CacheKeys.tagged(tags, request.url.path, user_id)

    return CacheRule(path_prefix=path_prefix, ttl=ttl, tags=tuple(tags), key_builder=key)


# -----------------------------------------------------------------------------
# Middleware
# -----------------------------------------------------------------------------


class ResponseCacheMiddleware(BaseHTTPMiddleware):
    """Serve and store JSON responses through ``CacheService``."""

    def __init__(
        self,
        app: ASGIApp,
        cache: CacheService,
        rules: Sequence[CacheRule] = (),
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(app)
        self.cache = cache
        self.rules = list(rules)
        self._clock = clock

    def _match(self, request: Request) -> CacheRule | None:
        path = request.url.path
        return next((rule for rule in self.rules if rule.matches(path)), None)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.method not in ("GET", "HEAD"):
            return await call_next(request)

        rule = self._match(request)
        if rule is None or has_realtime_params(request):
            return await call_next(request)
        if rule.condition is not None and not rule.condition(request):
            return await call_next(request)

        key = rule.build_key(request, request_user_id(request))
        if key is None:
            return await call_next(request)

        cached = await self.cache.get(key)
        if isinstance(cached, dict) and "body" in cached:
            return self._hit(request, cached, rule)

        response = await call_next(request)
        if request.method != "GET" or not self._cacheable(response):
            return response

        body = b"".join([chunk async for chunk in response.body_iterator])  # type: ignore
        headers = dict(response.headers)
        try:
            data = orjson.loads(body)
        except orjson.JSONDecodeError:
            return Response(content=body, status_code=response.status_code, headers=headers)

        entry = {
            "body": data,
            "status": response.status_code,
            "expires_at": self._clock() + rule.ttl,
        }
        await self.cache.set(key, entry, ttl=rule.ttl, tags=rule.tags)

        fresh = Response(content=body, status_code=response.status_code, headers=headers)
        self._annotate(fresh, "MISS", rule.ttl, rule.tags)
        return fresh

    @staticmethod
    def _cacheable(response: Response) -> bool:
        content_type = response.headers.get("content-type", "")
        return 200 <= response.status_code < 300 and content_type.startswith("application/json")

    def _hit(self, request: Request, cached: dict[str, Any], rule: CacheRule) -> Response:
        remaining = max(0, int(cached.get("expires_at", 0) - self._clock()))
        content = b"" if request.method == "HEAD" else orjson.dumps(cached["body"])
        response = Response(
            content=content,
            status_code=int(cached.get("status", 200)),
            media_type="application/json",
        )
        self._annotate(response, "HIT", remaining, rule.tags)
        return response

    @staticmethod
    def _annotate(response: Response, state: str, ttl: int, tags: Sequence[str]) -> None:
        response.headers["X-Cache"] = state
        response.headers["X-Cache-TTL"] = str(ttl)
        response.headers["X-Cache-Tags"] = ",".join(tags)


class CacheInvalidationMiddleware(BaseHTTPMiddleware):
    """Invalidate cache patterns after successful mutating requests.

    ``{user_id}`` in a pattern is replaced by the caller's identity.
    """

    def __init__(
        self,
        app: ASGIApp,
        cache: CacheService,
        patterns: Sequence[str] = (),
        tags: Sequence[str] = (),
    ) -> None:
        super().__init__(app)
        self.cache = cache
        self.patterns = list(patterns)
        self.tags = list(tags)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        if request.method not in MUTATING_METHODS or response.status_code >= 400:
            return response

        user_id = request_user_id(request) or ANONYMOUS
        for pattern in self.patterns:
            await self.cache.invalidate(pattern.replace("{user_id}", user_id))
        if self.tags:
            await self.cache.invalidate_tags(t.replace("{user_id}", user_id) for t in self.tags)
        return response


class CacheStatsMiddleware(BaseHTTPMiddleware):
    """Expose cache utilization in response headers."""

    def __init__(self, app: ASGIApp, cache: CacheService) -> None:
        super().__init__(app)
        self.cache = cache

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        stats = await self.cache.get_stats()
        response.headers["X-Cache-Stats-Local-Size"] = str(stats["local"]["size"])
        response.headers["X-Cache-Stats-Local-Max"] = str(stats["local"]["max_size"])
        response.headers["X-Cache-Stats-Redis-Status"] = (
            "connected" if stats["remote"]["connected"] else "disconnected"
        )
        response.headers["X-Cache-Hit-Rate"] = f"{stats['hit_rate']:.4f}"
        return response

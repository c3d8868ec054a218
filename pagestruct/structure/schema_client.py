"""Schema descriptor fetch with a short per-endpoint cache."""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from pagestruct.errors import SchemaFetchFailed
from pagestruct.net import get_with_retry

logger = logging.getLogger(__name__)


class SchemaDescriptor(BaseModel):
    """``{schema, prompt}`` pair served by the client's schema endpoint."""

    # "schema" shadows a BaseModel attribute, hence the alias
    json_schema: dict[str, Any] = Field(alias="schema")
    prompt: str

    model_config = ConfigDict(populate_by_name=True)


class SchemaClient:
    """GET ``schema_endpoint`` and parse the descriptor; cached for ``cache_ttl`` seconds."""

    def __init__(
        self,
        timeout: float = 10.0,
        cache_ttl: float = 300.0,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.monotonic,
        attempts: int = 2,
        backoff: float = 0.5,
        max_entries: int = 256,
    ):
        self.timeout = timeout
        self.cache_ttl = cache_ttl
        self.max_entries = max_entries
        self.attempts = attempts
        self.backoff = backoff
        self._client = client
        self._clock = clock
        self._cache: dict[str, tuple[float, SchemaDescriptor]] = {}

    async def fetch(self, endpoint: str) -> SchemaDescriptor:
        cached = self._cache.get(endpoint)
        if cached is not None:
            stored_at, descriptor = cached
            if self._clock() - stored_at < self.cache_ttl:
                return descriptor
            self._cache.pop(endpoint, None)

        descriptor = await self._fetch_uncached(endpoint)
        if self.cache_ttl > 0 and self.max_entries > 0:
            self._store(endpoint, descriptor)
        return descriptor

    def _store(self, endpoint: str, descriptor: SchemaDescriptor) -> None:
        now = self._clock()
        for key in [k for k, (stored_at, _) in self._cache.items() if now - stored_at >= self.cache_ttl]:
            del self._cache[key]
        self._cache.pop(endpoint, None)
        # Insertion order is age order; drop the oldest when full
        while len(self._cache) >= self.max_entries:
            del self._cache[next(iter(self._cache))]
        self._cache[endpoint] = (now, descriptor)

    @property
    def cache_size(self) -> int:
        return len(self._cache)

    def invalidate(self, endpoint: str | None = None) -> None:
        if endpoint is None:
            self._cache.clear()
        else:
            self._cache.pop(endpoint, None)

    async def _get(self, client: httpx.AsyncClient, endpoint: str) -> httpx.Response:
        # Redirects are not followed: the endpoint was checked against the private-address guard
        return await get_with_retry(
            client,
            endpoint,
            timeout=self.timeout,
            follow_redirects=False,
            attempts=self.attempts,
            backoff=self.backoff,
        )

    async def _fetch_uncached(self, endpoint: str) -> SchemaDescriptor:
        try:
            if self._client is not None:
                response = await self._get(self._client, endpoint)
            else:
                async with httpx.AsyncClient() as client:
                    response = await self._get(client, endpoint)
        except httpx.TimeoutException as e:
            raise SchemaFetchFailed(
                f"Schema endpoint timed out after {self.timeout}s",
                details={"endpoint": endpoint, "timeout": True},
            ) from e
        except httpx.HTTPError as e:
            raise SchemaFetchFailed(
                f"Schema endpoint unreachable: {e}",
                details={"endpoint": endpoint, "error": str(e) or type(e).__name__},
            ) from e

        if not response.is_success:
            raise SchemaFetchFailed(
                f"Schema endpoint returned HTTP {response.status_code}",
                details={"endpoint": endpoint, "http_status": response.status_code},
            )

        try:
            body = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise SchemaFetchFailed(
                "Schema endpoint returned a non-JSON body",
                details={"endpoint": endpoint, "body": response.text[:200]},
            ) from e

        if not isinstance(body, dict):
            raise SchemaFetchFailed(
                "Schema endpoint body must be a JSON object",
                details={"endpoint": endpoint},
            )
        try:
            descriptor = SchemaDescriptor.model_validate(body)
        except ValidationError as e:
            raise SchemaFetchFailed(
                "Schema endpoint body must contain an object 'schema' and a string 'prompt'",
                details={"endpoint": endpoint, "errors": [err["msg"] for err in e.errors()][:5]},
            ) from e
        logger.debug("Fetched schema descriptor from %s", endpoint)
        return descriptor

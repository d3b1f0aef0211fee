"""Shared plumbing for provider adapters.

Each adapter is a class with a ``name`` (its ``raw_data`` namespace and its
stage name) and an async :meth:`SourceAdapter.sync`. Adapters share one
``httpx.AsyncClient`` per run and pace their calls through a
:class:`~voidsync.pacing.TokenBucket`.

Every transport failure and every malformed response body is raised as
:class:`ProviderError`, which is the only exception an adapter catches per
project. Anything else (database errors included) propagates to the
orchestrator.
"""
from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

import httpx
from sqlalchemy.orm import Session

from voidsync.config import Settings, get_settings
from voidsync.matching import ResolverChain
from voidsync.models import Project
from voidsync.pacing import TokenBucket
from voidsync.store import all_projects, merge_fragment

log = logging.getLogger(__name__)

# Raised when a 200 response does not have the shape the parser expects.
PAYLOAD_ERRORS = (KeyError, IndexError, TypeError, ValueError, AttributeError, OverflowError)


class ProviderError(Exception):
    """A provider call failed: transport error, timeout, HTTP status, bad body."""

    def __init__(self, provider: str, message: str, status_code: int | None = None):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.status_code = status_code


@dataclass
class AdapterResult:
    enriched: int = 0
    failed: int = 0
    skipped: int = 0
    total: int = 0
    status: str = "ok"  # ok | api_unavailable | not_configured | error
    error: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def unavailable(cls, error: str, **extra: Any) -> AdapterResult:
        return cls(status="api_unavailable", error=error, extra=extra)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "enriched": self.enriched,
            "failed": self.failed,
            "skipped": self.skipped,
            "total": self.total,
            "status": self.status,
        }
        if self.error:
            out["error"] = self.error
        out.update(self.extra)
        return out


class SourceAdapter(ABC):
    name: str = "source"
    # Minimum seconds between two calls to this provider
    min_interval: float = 0.05

    def __init__(
        self,
        client: httpx.AsyncClient,
        settings: Settings | None = None,
        pacer: TokenBucket | None = None,
    ):
        self.client = client
        self.settings = settings or get_settings()
        self.pacer = pacer or TokenBucket.from_interval(self.min_interval)

    def headers(self) -> dict[str, str]:
        return {"User-Agent": self.settings.user_agent, "Accept": "application/json"}

    async def request(self, method: str, url: str, **kwargs: Any) -> Any:
        """Paced request returning the decoded JSON body, or raising ProviderError."""
        await self.pacer.acquire()
        headers = {**self.headers(), **kwargs.pop("headers", {})}
        try:
            resp = await self.client.request(
                method, url, headers=headers, timeout=self.settings.request_timeout_seconds, **kwargs
            )
        except httpx.TimeoutException as exc:
            raise ProviderError(self.name, f"timeout for {url}") from exc
        except httpx.HTTPError as exc:
            raise ProviderError(self.name, f"{type(exc).__name__} for {url}: {exc}") from exc
        if resp.status_code >= 400:
            raise ProviderError(self.name, f"HTTP {resp.status_code} for {url}", resp.status_code)
        try:
            return resp.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise ProviderError(self.name, f"undecodable body from {url}") from exc

    async def get_json(self, url: str, **kwargs: Any) -> Any:
        return await self.request("GET", url, **kwargs)

    async def post_json(self, url: str, payload: Any, **kwargs: Any) -> Any:
        return await self.request("POST", url, json=payload, **kwargs)

    async def graphql(self, url: str, query: str, variables: dict[str, Any] | None = None, **kwargs: Any) -> dict:
        body = await self.post_json(url, {"query": query, "variables": variables or {}}, **kwargs)
        if not isinstance(body, dict):
            raise ProviderError(self.name, "GraphQL response is not an object")
        if body.get("errors"):
            first = body["errors"][0]
            message = first.get("message") if isinstance(first, dict) else str(first)
            raise ProviderError(self.name, f"GraphQL error: {message}")
        return body.get("data") or {}

    @contextmanager
    def parsing(self, what: str) -> Iterator[None]:
        """Re-raise payload-shape errors from the enclosed parsing as ProviderError."""
        try:
            yield
        except PAYLOAD_ERRORS as exc:
            raise ProviderError(self.name, f"unexpected payload for {what}: {type(exc).__name__}: {exc}") from exc

    @abstractmethod
    async def sync(self, session: Session) -> AdapterResult:
        ...

    async def run(self, session: Session) -> dict[str, Any]:
        result = await self.sync(session)
        log.info(
            "%s sync: %d enriched, %d failed, %d skipped of %d (%s)",
            self.name, result.enriched, result.failed, result.skipped, result.total, result.status,
        )
        return result.to_dict()


class PerProjectAdapter(SourceAdapter):
    """Adapter that resolves an identifier per project and makes one call for it.

    Subclasses provide :meth:`resolver` and :meth:`fetch_fragment`, and may
    override :meth:`prepare` for an initial provider-wide fetch and
    :meth:`candidates` to narrow the project set.
    """

    def candidates(self, session: Session) -> list[Project] | None:
        return all_projects(session)

    @abstractmethod
    def resolver(self) -> ResolverChain:
        ...

    async def prepare(self, session: Session, result: AdapterResult) -> bool:
        """Provider-wide setup. Return ``False`` to end the run with *result* as is."""
        return True

    @abstractmethod
    async def fetch_fragment(self, identifier: str, project: Project) -> dict[str, Any] | None:
        """Fetch this provider's data for one project; ``None`` means nothing to store."""

    async def sync(self, session: Session) -> AdapterResult:
        result = AdapterResult()
        try:
            with self.parsing("bootstrap"):
                ready = await self.prepare(session, result)
        except ProviderError as exc:
            log.warning("%s bootstrap failed: %s", self.name, exc)
            return AdapterResult.unavailable(str(exc))
        if not ready:
            return result
        projects = self.candidates(session)
        if projects is None:
            result.status = "error"
            result.error = result.error or f"{self.name}: candidate category not found"
            return result
        result.total = len(projects)
        resolver = self.resolver()
        for project in projects:
            found = resolver.resolve(project)
            if found is None:
                result.skipped += 1
                continue
            try:
                with self.parsing(found.identifier):
                    fragment = await self.fetch_fragment(found.identifier, project)
            except ProviderError as exc:
                log.warning("%s fetch failed for %s (%s): %s", self.name, project.slug, found.identifier, exc)
                result.failed += 1
                continue
            if fragment is None:
                result.skipped += 1
                continue
            merge_fragment(session, project, self.name, fragment)
            session.commit()
            result.enriched += 1
        return result

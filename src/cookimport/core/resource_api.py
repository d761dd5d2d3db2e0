"""Async client for the cookbook Resource API.

Only the five operations the import workflow needs are exposed. Every method
either returns the decoded success value or raises a ResourceApiError subclass:

- ResourceTransportError: no response at all (connect, timeout, protocol).
- ResourceApiError: a response with a non-success status code.
- MalformedResponseError: a success response whose body cannot be decoded.
"""

from __future__ import annotations

import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

import httpx

from cookimport.core.config import ConfigResolver
from cookimport.core.errors import (
    MalformedResponseError,
    ResourceApiError,
    ResourceTransportError,
)
from cookimport.core.jobs.model import JobHandle
from cookimport.core.logging import get_logger

_LOGGER = get_logger(__name__)

ALLOWED_CONTENT_TYPES = frozenset({"image/jpeg", "image/png"})

START_ACCEPTED = frozenset({200, 202})


@dataclass(frozen=True)
class UploadFile:
    """One index page image staged for upload."""

    filename: str
    content: bytes
    content_type: str = "image/jpeg"


def _duration_ms(t0: float, t1: float) -> int:
    ms = int((t1 - t0) * 1000.0)
    return 0 if ms < 0 else ms


def _error_message(resp: httpx.Response) -> str:
    text = resp.text.strip()
    return text or f"HTTP error: {resp.status_code}"


def _json_body(resp: httpx.Response, operation: str) -> Any:
    try:
        return resp.json()
    except ValueError as e:
        raise MalformedResponseError(
            f"{operation}: response body is not valid JSON", status_code=resp.status_code
        ) from e


class ResourceApi:
    """Thin request/response wrapper over httpx.AsyncClient."""

    def __init__(
        self,
        base_url: str = "http://localhost:8080",
        *,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    @classmethod
    def from_resolver(cls, resolver: ConfigResolver) -> ResourceApi:
        settings = resolver.resolve_api_settings()
        return cls(settings.base_url, timeout=settings.timeout)

    async def __aenter__(self) -> ResourceApi:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def create_owner_resource(self, form: Mapping[str, Any]) -> str:
        resp = await self._request(
            "POST",
            "/api/cookbooks",
            operation="create_owner_resource",
            ok=frozenset({200, 201}),
            json={"title": form.get("title"), "author": form.get("author")},
        )
        body = _json_body(resp, "create_owner_resource")
        owner_id = body.get("id") if isinstance(body, dict) else None
        if owner_id is None or str(owner_id) == "":
            raise MalformedResponseError(
                "create_owner_resource: response has no 'id'", status_code=resp.status_code
            )
        return str(owner_id)

    async def upload_payload(self, owner_id: str, files: Sequence[UploadFile]) -> None:
        await self._request(
            "POST",
            f"/api/cookbooks/{owner_id}/index-pages",
            operation="upload_payload",
            files=[("files", (f.filename, f.content, f.content_type)) for f in files],
        )

    async def start_job(self, owner_id: str) -> int:
        """Ask the server to start OCR for an owner; returns the accepted status code.

        409 (already running) is raised as ResourceApiError like any other
        non-success code; interpreting it is the launcher's job.
        """
        resp = await self._request(
            "POST",
            f"/api/cookbooks/{owner_id}/ocr/start",
            operation="start_job",
            ok=START_ACCEPTED,
        )
        return resp.status_code

    async def get_job_status(self, owner_id: str) -> JobHandle:
        resp = await self._request(
            "GET",
            f"/api/cookbooks/{owner_id}/ocr/results",
            operation="get_job_status",
        )
        return JobHandle.from_payload(owner_id, _json_body(resp, "get_job_status"))

    async def confirm_import(self, owner_id: str, items: Sequence[Mapping[str, Any]]) -> None:
        await self._request(
            "POST",
            f"/api/cookbooks/{owner_id}/confirm",
            operation="confirm_import",
            json={"recipes": [dict(i) for i in items]},
        )

    async def _request(
        self,
        method: str,
        path: str,
        *,
        operation: str,
        ok: frozenset[int] = frozenset({200}),
        **kwargs: Any,
    ) -> httpx.Response:
        t0 = time.monotonic()
        try:
            resp = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            _LOGGER.verbose(f"{operation}: transport failure: {type(e).__name__}: {e}")
            raise ResourceTransportError(str(e) or type(e).__name__) from e

        _LOGGER.verbose(
            f"{operation}: {method} {path} -> {resp.status_code} "
            f"({_duration_ms(t0, time.monotonic())} ms)"
        )
        if resp.status_code not in ok:
            raise ResourceApiError(_error_message(resp), status_code=resp.status_code)
        return resp

"""Vendor-agnostic HTTP execution over ``httpx.AsyncClient``.

The transport knows nothing about request or response shapes: it posts JSON,
reads JSON, or pumps a streaming body through a per-read sink. The provider
name is carried only to label errors.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Any

import httpx

from aihttp.errors import ParseError, TransportError
from aihttp.providers._errors import error_from_response, wrap_transport_error
from aihttp.retry import RetryPolicy, retry_async

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

logger = logging.getLogger(__name__)


class HttpTransport:
    """Execute JSON and streaming HTTP calls.

    Args:
        client: Optional pre-built ``httpx.AsyncClient`` (tests pass one
            backed by ``httpx.MockTransport``). When omitted, a client is
            created lazily and closed by ``aclose``.
        timeout_s: Default per-request timeout.
    """

    def __init__(
        self,
        *,
        client: httpx.AsyncClient | None = None,
        timeout_s: float = 60.0,
    ) -> None:
        self._client = client
        self._owns_client = client is None
        self._timeout_s = timeout_s

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout_s))
        return self._client

    def _timeout(self, timeout_s: float | None) -> httpx.Timeout:
        return httpx.Timeout(timeout_s if timeout_s is not None else self._timeout_s)

    async def post_json(
        self,
        url: str,
        body: Mapping[str, Any],
        headers: Mapping[str, str],
        *,
        provider: str,
        timeout_s: float | None = None,
        retry: RetryPolicy | None = None,
    ) -> Any:
        """POST *body* as JSON and return the decoded 2xx response body."""

        async def _once() -> Any:
            return await self._request_json(
                "POST",
                url,
                headers,
                json_body=body,
                provider=provider,
                phase="request",
                timeout_s=timeout_s,
            )

        if retry is None:
            return await _once()
        return await retry_async(_once, policy=retry)

    async def get_json(
        self,
        url: str,
        headers: Mapping[str, str],
        *,
        provider: str,
        params: Mapping[str, Any] | None = None,
        timeout_s: float | None = None,
        retry: RetryPolicy | None = None,
    ) -> Any:
        """GET *url* and return the decoded 2xx response body."""

        async def _once() -> Any:
            return await self._request_json(
                "GET",
                url,
                headers,
                params=params,
                provider=provider,
                phase="list_models",
                timeout_s=timeout_s,
            )

        if retry is None:
            return await _once()
        return await retry_async(_once, policy=retry)

    async def post_multipart(
        self,
        url: str,
        headers: Mapping[str, str],
        *,
        files: Mapping[str, tuple[str, bytes, str]],
        data: Mapping[str, str],
        provider: str,
        timeout_s: float | None = None,
    ) -> Any:
        """POST a ``multipart/form-data`` body and return the decoded JSON reply.

        Any JSON ``Content-Type`` in *headers* is dropped so httpx can set the
        multipart boundary. Uploads are not retried.
        """
        form_headers = {k: v for k, v in headers.items() if k.lower() != "content-type"}
        return await self._request_json(
            "POST",
            url,
            form_headers,
            files=files,
            data=data,
            provider=provider,
            phase="upload",
            timeout_s=timeout_s,
        )

    async def stream(
        self,
        url: str,
        body: Mapping[str, Any],
        headers: Mapping[str, str],
        on_chunk: Callable[[bytes], bool | None],
        *,
        provider: str,
        timeout_s: float | None = None,
    ) -> str:
        """POST *body* and feed each body read to *on_chunk*.

        Returning ``False`` from *on_chunk* stops reading and closes the
        connection. Returns the raw text received.

        Raises:
            TransportError: Network failure, timeout, or non-2xx status
                (``VendorError`` when the body is a vendor error envelope).
        """
        received: list[bytes] = []
        client = self._get_client()
        try:
            async with client.stream(
                "POST",
                url,
                json=dict(body),
                headers={**headers, "Accept": "text/event-stream"},
                timeout=self._timeout(timeout_s),
            ) as response:
                if response.status_code >= 400:
                    content = await response.aread()
                    raise error_from_response(
                        status_code=response.status_code,
                        headers=response.headers,
                        content=content,
                        provider=provider,
                        phase="stream",
                    )
                async for chunk in response.aiter_bytes():
                    if not chunk:
                        continue
                    received.append(chunk)
                    if on_chunk(chunk) is False:
                        logger.debug("%s stream closed by consumer", provider)
                        break
        except asyncio.CancelledError:
            raise
        except TransportError:
            raise
        except httpx.HTTPError as e:
            raise wrap_transport_error(e, provider=provider, phase="stream") from e
        return b"".join(received).decode("utf-8", errors="replace")

    async def _request_json(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        *,
        provider: str,
        phase: str,
        json_body: Mapping[str, Any] | None = None,
        params: Mapping[str, Any] | None = None,
        files: Mapping[str, tuple[str, bytes, str]] | None = None,
        data: Mapping[str, str] | None = None,
        timeout_s: float | None = None,
    ) -> Any:
        client = self._get_client()
        try:
            response = await client.request(
                method,
                url,
                json=dict(json_body) if json_body is not None else None,
                params=dict(params) if params else None,
                files=dict(files) if files else None,
                data=dict(data) if data else None,
                headers=dict(headers),
                timeout=self._timeout(timeout_s),
            )
        except asyncio.CancelledError:
            raise
        except httpx.HTTPError as e:
            raise wrap_transport_error(e, provider=provider, phase=phase) from e

        if response.status_code >= 400:
            raise error_from_response(
                status_code=response.status_code,
                headers=response.headers,
                content=response.content,
                provider=provider,
                phase=phase,
            )
        try:
            return json.loads(response.content)
        except ValueError as e:
            raise ParseError(
                f"{provider} returned a non-JSON body (status={response.status_code})"
            ) from e

    async def aclose(self) -> None:
        """Close the underlying client if this transport created it."""
        client = self._client
        if client is None or not self._owns_client:
            return
        self._client = None
        await client.aclose()

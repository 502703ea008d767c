"""Client facade: provider selection, fallback, streaming, continuation.

Every operation returns ``Success``/``Failure`` for expected failures.
Requesting a provider that is not registered raises ``UnknownProviderError``.
"""

from __future__ import annotations

from collections.abc import Callable
import logging
import mimetypes
from pathlib import Path
import time
from typing import TYPE_CHECKING, Any

from aihttp.config import ClientConfig
from aihttp.continuation import ContinuationManager
from aihttp.errors import (
    AIHttpError,
    ConfigurationError,
    TransportError,
    ValidationError,
)
from aihttp.models import (
    ConnectionTestResult,
    Message,
    StandardRequest,
    StreamChunk,
)
from aihttp.providers.base import SupportsFileUpload
from aihttp.registry import ProviderFactory, adapter_class
from aihttp.request import normalize_request
from aihttp.response import normalize_response
from aihttp.result import Failure, Result, Success
from aihttp.retry import RetryPolicy
from aihttp.streaming import StreamAssembler
from aihttp.transport import HttpTransport

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from aihttp.continuation import ContinuationStore
    from aihttp.models import ModelInfo, StandardResponse, ToolResult
    from aihttp.providers.base import VendorAdapter
    from aihttp.request import VendorRequest

logger = logging.getLogger(__name__)

ChunkSink = Callable[[StreamChunk], None]

CONNECTION_TEST_PROMPT = 'Test connection - respond with "OK"'
CONNECTION_TEST_MAX_TOKENS = 10

# Failures that move a non-streaming send on to the next provider.
_FALLBACK_ERRORS: tuple[type[AIHttpError], ...] = (
    ValidationError,
    ConfigurationError,
    TransportError,
)


def _emit_error(sink: ChunkSink, error: AIHttpError) -> None:
    sink(StreamChunk(done=True, error=str(error), error_type=type(error).__name__))


def _label(error: AIHttpError, provider: str) -> AIHttpError:
    if isinstance(error, TransportError) and error.provider is None:
        error.provider = provider
    return error


class Client:
    """Unified entry point over all registered providers.

    Args:
        config: Provider selection, fallback order, and per-provider config.
        transport: HTTP transport; tests inject one over ``httpx.MockTransport``.
        store: Durable continuation store; defaults to in-memory.
        clock: Time source for continuation expiry.

    Example:
        async with Client(ClientConfig(default_provider="anthropic")) as client:
            result = await client.send(StandardRequest.from_dict({...}))
            if result.ok:
                print(result.value.content)
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        *,
        transport: HttpTransport | None = None,
        store: ContinuationStore | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config or ClientConfig()
        self._factory = ProviderFactory(self._config)
        self._transport = transport or HttpTransport()
        self._continuations = ContinuationManager(
            store, ttl_seconds=self._config.continuation_ttl_s, clock=clock
        )

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def continuations(self) -> ContinuationManager:
        return self._continuations

    async def __aenter__(self) -> Client:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._transport.aclose()

    # --- Provider selection ---

    def _provider_chain(self, provider: str | None) -> tuple[str, ...]:
        primary = provider or self._config.default_provider
        adapter_class(primary)
        if not self._config.fallback_enabled:
            return (primary,)
        chain = [primary]
        for name in self._config.fallback_providers:
            adapter_class(name)
            if name not in chain:
                chain.append(name)
        return tuple(chain)

    def _prepare(
        self,
        provider: str,
        request: StandardRequest,
        overrides: Mapping[str, Any] | None,
        *,
        stream: bool,
    ) -> tuple[VendorAdapter, VendorRequest, dict[str, str]]:
        adapter = self._factory.create(provider, overrides)
        vendor = normalize_request(request, adapter, stream=stream)
        # Credentials are checked before any HTTP call.
        return adapter, vendor, adapter.headers()

    async def _execute(
        self, adapter: VendorAdapter, vendor: VendorRequest, headers: dict[str, str]
    ) -> StandardResponse:
        raw = await self._transport.post_json(
            vendor.url,
            vendor.body,
            headers,
            provider=adapter.name,
            timeout_s=adapter.config.timeout_s,
            retry=RetryPolicy.for_provider(adapter.config),
        )
        return normalize_response(raw, adapter, requested_model=vendor.request.model)

    async def _stream(
        self,
        adapter: VendorAdapter,
        vendor: VendorRequest,
        headers: dict[str, str],
        on_chunk: ChunkSink,
        session_id: str,
    ) -> Result[StandardResponse, AIHttpError]:
        assembler = StreamAssembler(adapter, on_chunk, requested_model=vendor.request.model)
        try:
            await self._transport.stream(
                vendor.url,
                vendor.body,
                headers,
                assembler.feed,
                provider=adapter.name,
                timeout_s=adapter.config.timeout_s,
            )
            response = assembler.finish()
        except AIHttpError as e:
            error = _label(e, adapter.name)
            logger.debug("%s stream failed: %s", adapter.name, error)
            assembler.fail(error)
            return Failure(error)

        await self._continuations.record(
            adapter.name, session_id, vendor.request, response, adapter
        )
        return Success(response)

    # --- Public API ---

    async def send(
        self,
        request: StandardRequest,
        *,
        provider: str | None = None,
        session_id: str = "default",
        overrides: Mapping[str, Any] | None = None,
    ) -> Result[StandardResponse, AIHttpError]:
        """Send one non-streaming request.

        With fallback enabled, a validation, configuration, transport, or
        vendor failure moves on to the next provider in
        ``ClientConfig.fallback_providers`` with the request unmodified.
        *overrides* apply to the first provider only. Continuation state is
        recorded under the provider that answered.

        Raises:
            UnknownProviderError: If a provider in the chain is not registered.
        """
        chain = self._provider_chain(provider)
        for idx, name in enumerate(chain):
            try:
                adapter, vendor, headers = self._prepare(
                    name, request, overrides if idx == 0 else None, stream=False
                )
                response = await self._execute(adapter, vendor, headers)
            except AIHttpError as e:
                error = _label(e, name)
                if idx + 1 < len(chain) and isinstance(error, _FALLBACK_ERRORS):
                    logger.warning(
                        "%s failed (%s: %s); falling back to %s",
                        name,
                        type(error).__name__,
                        error.message,
                        chain[idx + 1],
                    )
                    continue
                return Failure(error)

            await self._continuations.record(name, session_id, vendor.request, response, adapter)
            return Success(response)

        raise AssertionError("unreachable: provider chain is never empty")

    async def send_streaming(
        self,
        request: StandardRequest,
        on_chunk: ChunkSink,
        *,
        provider: str | None = None,
        session_id: str = "default",
        overrides: Mapping[str, Any] | None = None,
    ) -> Result[StandardResponse, AIHttpError]:
        """Stream one turn, pushing each ``StreamChunk`` to *on_chunk*.

        *on_chunk* sees exactly one ``done=True`` chunk per call; on failure
        that chunk carries ``error`` and ``error_type``. Streaming never falls
        back to another provider.
        """
        name = provider or self._config.default_provider
        adapter_class(name)
        try:
            adapter, vendor, headers = self._prepare(name, request, overrides, stream=True)
        except AIHttpError as e:
            _emit_error(on_chunk, e)
            return Failure(e)
        return await self._stream(adapter, vendor, headers, on_chunk, session_id)

    async def continue_with_tool_results(
        self,
        provider: str,
        session_id: str,
        tool_results: Sequence[ToolResult],
        *,
        on_chunk: ChunkSink | None = None,
        overrides: Mapping[str, Any] | None = None,
    ) -> Result[StandardResponse, AIHttpError]:
        """Resume a session with the results of externally executed tools.

        Streams when *on_chunk* is given. Missing or expired state fails with
        ``ContinuationError``; a fresh request is never sent in its place.
        State is replaced when the turn succeeds and kept when it fails.
        """
        adapter_class(provider)
        try:
            adapter = self._factory.create(provider, overrides)
            vendor = await self._continuations.build_continuation(
                provider, session_id, tool_results, adapter, stream=on_chunk is not None
            )
            headers = adapter.headers()
        except AIHttpError as e:
            if on_chunk is not None:
                _emit_error(on_chunk, e)
            return Failure(e)

        if on_chunk is not None:
            return await self._stream(adapter, vendor, headers, on_chunk, session_id)

        try:
            response = await self._execute(adapter, vendor, headers)
        except AIHttpError as e:
            return Failure(_label(e, provider))
        await self._continuations.record(provider, session_id, vendor.request, response, adapter)
        return Success(response)

    async def can_continue(self, provider: str, session_id: str = "default") -> bool:
        return await self._continuations.can_continue(provider, session_id)

    async def clear_continuation(self, provider: str, session_id: str = "default") -> None:
        await self._continuations.clear(provider, session_id)

    async def list_models(self, provider: str) -> Result[tuple[ModelInfo, ...], AIHttpError]:
        """List the models *provider* advertises, filtered to chat-capable ones."""
        adapter_class(provider)
        try:
            adapter = self._factory.create(provider)
            if not adapter.capabilities.model_listing:
                raise ConfigurationError(f"{provider} does not support model listing")
            raw = await self._transport.get_json(
                adapter.models_endpoint(),
                adapter.headers(),
                provider=provider,
                timeout_s=adapter.config.timeout_s,
                retry=RetryPolicy.for_provider(adapter.config),
            )
            models = adapter.parse_models(raw)
        except AIHttpError as e:
            return Failure(_label(e, provider))
        logger.debug("%s lists %d models", provider, len(models))
        return Success(models)

    async def upload_file(
        self,
        provider: str,
        path: str | Path,
        *,
        purpose: str = "user_data",
    ) -> Result[str, AIHttpError]:
        """Upload a local file to *provider*'s Files API and return its file id.

        The id can be sent back as ``ContentPart(type="file", file_id=...)``.
        Uploads are not retried.
        """
        adapter_class(provider)
        file_path = Path(path)
        try:
            adapter = self._factory.create(provider)
            if not adapter.capabilities.file_upload or not isinstance(
                adapter, SupportsFileUpload
            ):
                raise ConfigurationError(
                    f"{provider} does not support file uploads",
                    hint="Use openai, grok or openrouter, or inline the file as a data URL.",
                )
            try:
                content = file_path.read_bytes()
            except OSError as e:
                raise ValidationError(
                    f"Cannot read upload file {file_path}: {e.strerror or e}",
                    hint="Pass the path of an existing, readable file.",
                ) from e
            mime_type = mimetypes.guess_type(file_path.name)[0] or "application/octet-stream"
            raw = await self._transport.post_multipart(
                adapter.files_endpoint(),
                adapter.headers(),
                files={"file": (file_path.name, content, mime_type)},
                data={"purpose": purpose},
                provider=provider,
                timeout_s=adapter.config.timeout_s,
            )
            file_id = adapter.parse_file_id(raw)
        except AIHttpError as e:
            return Failure(_label(e, provider))
        logger.debug(
            "Uploaded %s to %s as %s (%d bytes)", file_path.name, provider, file_id, len(content)
        )
        return Success(file_id)

    async def test_connection(
        self, provider: str, *, model: str | None = None
    ) -> ConnectionTestResult:
        """Probe *provider* with a tiny request. Never raises for API failures."""
        adapter_class(provider)
        request = StandardRequest(
            messages=(Message(role="user", content=CONNECTION_TEST_PROMPT),),
            model=model,
            max_tokens=CONNECTION_TEST_MAX_TOKENS,
        )
        try:
            adapter, vendor, headers = self._prepare(provider, request, None, stream=False)
            response = await self._execute(adapter, vendor, headers)
        except AIHttpError as e:
            return ConnectionTestResult(
                success=False,
                message=f"Connection test failed: {e.message}",
                provider=provider,
                model_used=model,
            )
        return ConnectionTestResult(
            success=True,
            message="Connection successful",
            provider=provider,
            model_used=response.model or vendor.request.model,
            response_content=response.content,
        )

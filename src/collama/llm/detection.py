"""Backend and model-capability detection.

Results live in an explicitly owned :class:`BackendCache` that is handed to
:class:`~collama.llm.factory.LLMClientFactory`; tests inject fixed values
with :meth:`BackendCache.set`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from collama.config import EndpointSpec
from collama.types import BackendType, RequestCategory

_logger = logging.getLogger(__name__)

DETECTION_TIMEOUT = 5.0


@dataclass
class DetectedBackend:
    backend: BackendType | None = None
    context_length: int = 0


def _client(
    spec: EndpointSpec,
    transport: httpx.AsyncBaseTransport | None,
    timeout: float = DETECTION_TIMEOUT,
) -> httpx.AsyncClient:
    headers = {"Authorization": f"Bearer {spec.bearer}"} if spec.bearer else {}
    return httpx.AsyncClient(
        base_url=spec.url.rstrip("/"),
        headers=headers,
        timeout=timeout,
        transport=transport,
    )


async def detect_backend(
    spec: EndpointSpec,
    transport: httpx.AsyncBaseTransport | None = None,
) -> BackendType | None:
    """Probe Ollama first, then OpenAI-compatible; ``None`` if neither answers."""
    async with _client(spec, transport) as client:
        try:
            resp = await client.get("/api/tags")
            resp.raise_for_status()
            resp.json()
            return BackendType.OLLAMA
        except (httpx.HTTPError, ValueError) as e:
            _logger.debug("Ollama probe failed for %s: %s", spec.url, e)

        try:
            resp = await client.get("/v1/models")
            resp.raise_for_status()
            resp.json()
            return BackendType.OPENAI
        except (httpx.HTTPError, ValueError) as e:
            _logger.debug("OpenAI probe failed for %s: %s", spec.url, e)

    return None


async def get_model_context_length(
    spec: EndpointSpec,
    backend: BackendType,
    transport: httpx.AsyncBaseTransport | None = None,
) -> int:
    """Maximum context window of ``spec.model``; 0 when unknown."""
    try:
        async with _client(spec, transport, timeout=30) as client:
            if backend is BackendType.OLLAMA:
                resp = await client.post("/api/show", json={"model": spec.model})
                resp.raise_for_status()
                info = resp.json().get("model_info") or {}
                for key, value in info.items():
                    if key.lower().endswith("context_length") and isinstance(value, int):
                        return value
            else:
                resp = await client.get("/v1/models")
                resp.raise_for_status()
                for entry in resp.json().get("data") or []:
                    if entry.get("id") == spec.model and isinstance(entry.get("max_model_len"), int):
                        return entry["max_model_len"]
    except (httpx.HTTPError, ValueError) as e:
        _logger.warning("Error checking context length: %s", e)
    return 0


async def get_model_thinking(
    spec: EndpointSpec,
    transport: httpx.AsyncBaseTransport | None = None,
) -> bool:
    """True when an Ollama model advertises the ``thinking`` capability."""
    try:
        async with _client(spec, transport, timeout=30) as client:
            resp = await client.post("/api/show", json={"model": spec.model})
            resp.raise_for_status()
            capabilities = resp.json().get("capabilities") or []
    except (httpx.HTTPError, ValueError) as e:
        _logger.info("Error checking thinking capability for %s: %s", spec.model, e)
        return False
    thinking = "thinking" in capabilities
    _logger.info("Thinking %s for %s", "capability detected" if thinking else "not available", spec.model)
    return thinking


async def list_models(
    spec: EndpointSpec,
    backend: BackendType,
    transport: httpx.AsyncBaseTransport | None = None,
) -> list[str]:
    """Model names served by the endpoint; empty on error."""
    try:
        async with _client(spec, transport, timeout=30) as client:
            if backend is BackendType.OLLAMA:
                resp = await client.get("/api/tags")
                resp.raise_for_status()
                return [m["name"] for m in resp.json().get("models") or []]
            resp = await client.get("/v1/models")
            resp.raise_for_status()
            return [m["id"] for m in resp.json().get("data") or []]
    except (httpx.HTTPError, ValueError, KeyError) as e:
        _logger.warning("Error retrieving available models: %s", e)
        return []


class BackendCache:
    """Detected backend and context length per request category."""

    def __init__(
        self,
        default_context_length: int = 4096,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._entries: dict[RequestCategory, DetectedBackend] = {}
        self._default_context_length = default_context_length
        self._transport = transport

    def get(self, category: RequestCategory) -> DetectedBackend:
        return self._entries.get(category, DetectedBackend())

    def set(
        self,
        category: RequestCategory,
        backend: BackendType | None,
        context_length: int | None = None,
    ) -> None:
        self._entries[category] = DetectedBackend(
            backend=backend,
            context_length=context_length or self._default_context_length,
        )

    def invalidate(self, category: RequestCategory | None = None) -> None:
        """Forget one category (endpoint or model changed), or everything."""
        if category is None:
            self._entries.clear()
        else:
            self._entries.pop(category, None)

    async def detect(
        self,
        category: RequestCategory,
        spec: EndpointSpec,
        force: bool = False,
    ) -> DetectedBackend:
        """Detect backend and context length unless already cached."""
        cached = self._entries.get(category)
        if cached is not None and cached.backend is not None and not force:
            return cached

        backend = await detect_backend(spec, self._transport)
        if backend is None:
            _logger.warning("Failed to detect LLM backend (%s) at %s", category.value, spec.url)
            entry = DetectedBackend(context_length=self._default_context_length)
            self._entries[category] = entry
            return entry
        _logger.info("Detected LLM backend (%s): %s", category.value, backend.value)

        context_length = await get_model_context_length(spec, backend, self._transport)
        if context_length == 0:
            _logger.warning(
                "Could not detect context length (%s), using default %d",
                category.value, self._default_context_length,
            )
            context_length = self._default_context_length
        else:
            _logger.info("Detected model context length (%s): %d", category.value, context_length)

        entry = DetectedBackend(backend=backend, context_length=context_length)
        self._entries[category] = entry
        return entry

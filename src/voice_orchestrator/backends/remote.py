"""
Remote text-generation backend.

Talks to an OpenAI-compatible chat endpoint over HTTP. The remote service
only offers text generation; speech-to-text must be served locally.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from voice_orchestrator.backends.base import Backend, ModelHandle, ProgressCallback, report_progress
from voice_orchestrator.errors import GenerationError, LoadError
from voice_orchestrator.prompts.templates import ModelFamily
from voice_orchestrator.schemas import Capability, LogicalModelSpec, TaskKind

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = "You are a helpful AI assistant. Provide concise and informative responses."
CHAT_ENDPOINT = "/openai"


def extract_completion_text(data: Any) -> str:
    """
    Pull generated text out of the response shapes the endpoint may return.

    Handles `choices[0].message.content`, `choices[0].text`, a top-level
    `response` field and bare strings.
    """
    if isinstance(data, str):
        return data
    if not isinstance(data, dict):
        return ""

    choices = data.get("choices") or []
    if choices:
        first = choices[0] or {}
        message = first.get("message") or {}
        return str(message.get("content") or first.get("text") or "")
    if data.get("response"):
        return str(data["response"])
    return ""


class RemoteAPIHandle(ModelHandle):
    def __init__(self, remote: "RemoteAPIBackend", **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._remote = remote

    async def invoke(self, model_input: Any, **params: Any) -> str:
        if not self.ready:
            raise GenerationError(f"Remote handle for {self.logical_key} has been invalidated")
        return await self._remote.complete(
            [
                {"role": "system", "content": self.system_prompt or DEFAULT_SYSTEM_PROMPT},
                {"role": "user", "content": str(model_input)},
            ],
            max_tokens=params.get("max_new_tokens"),
        )

    def describe(self) -> dict[str, Any]:
        return {"endpoint": self._remote.endpoint, "model": self._remote.model}


class RemoteAPIBackend(Backend):
    """Cloud text generation through an OpenAI-compatible chat endpoint."""

    capability = Capability.REMOTE_API

    def __init__(
        self,
        base_url: str,
        model: str = "openai",
        *,
        max_tokens: int = 150,
        temperature: float = 0.7,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the remote backend.

        Args:
            base_url: Service base URL.
            model: Model name sent with each request.
            max_tokens: Upper bound on tokens requested per call.
            temperature: Sampling temperature.
            timeout: Request timeout in seconds.
            transport: Optional httpx transport (used by tests).
        """
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def endpoint(self) -> str:
        return f"{self._base_url}{CHAT_ENDPOINT}"

    @property
    def model(self) -> str:
        return self._model

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def check_connectivity(self) -> bool:
        """Send a tiny request; failures are logged, never raised."""
        try:
            client = await self._get_client()
            response = await client.post(
                CHAT_ENDPOINT,
                json={
                    "messages": [{"role": "user", "content": "Hello"}],
                    "model": self._model,
                    "max_tokens": 10,
                    "temperature": 0.5,
                },
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"Remote API connectivity test failed: {e}")
            return False
        logger.info("Remote API connectivity test passed")
        return True

    async def complete(self, messages: list[dict[str, str]], max_tokens: int | None = None) -> str:
        """
        Request a chat completion.

        Args:
            messages: Chat messages (role/content dicts).
            max_tokens: Requested token budget, capped by configuration.

        Returns:
            Generated text.

        Raises:
            GenerationError: On HTTP failure or an empty completion.
        """
        requested = max_tokens if max_tokens is not None else self._max_tokens
        body = {
            "messages": messages,
            "model": self._model,
            "max_tokens": min(requested, self._max_tokens),
            "temperature": self._temperature,
            "stream": False,
        }

        client = await self._get_client()
        try:
            response = await client.post(CHAT_ENDPOINT, json=body)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise GenerationError(
                f"Remote API error: {e.response.status_code} {e.response.reason_phrase}"
            ) from e
        except httpx.HTTPError as e:
            raise GenerationError(f"Remote API request failed: {e}") from e

        try:
            data: Any = response.json()
        except ValueError:
            data = response.text

        text = extract_completion_text(data).strip()
        if not text:
            raise GenerationError("No generated text received from remote API")
        return text

    async def load(
        self,
        spec: LogicalModelSpec,
        identifier: str,
        on_progress: ProgressCallback | None = None,
    ) -> ModelHandle:
        if spec.task != TaskKind.TEXT_GENERATION:
            raise LoadError(
                f"Remote API cannot serve {spec.task.value}",
                identifier=identifier,
                backend=self.capability.value,
            )

        report_progress(on_progress, 0, f"Setting up {spec.key} with the remote API...")
        await self.check_connectivity()
        report_progress(on_progress, 100, "Remote text generation ready!")

        return RemoteAPIHandle(
            self,
            logical_key=spec.key,
            identifier=identifier,
            backend=self.capability,
            task=spec.task,
            family=ModelFamily.CHAT_API,
        )

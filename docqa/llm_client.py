"""LLM provider clients and answer generators with error mapping.

Every HTTP failure is translated into the provider error taxonomy in
``docqa.errors`` so callers never see raw httpx exceptions.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx
import structlog

from docqa import config
from docqa.errors import (
    AnswerGeneratorError,
    ConfigurationError,
    EmbeddingProviderError,
    ProviderError,
    provider_error_from_status,
)

logger = structlog.get_logger()


def _retry_after(response: Optional[httpx.Response]) -> Optional[float]:
    if response is None:
        return None
    value = response.headers.get("retry-after")
    try:
        return float(value) if value is not None else None
    except ValueError:
        return None


def map_http_error(error: httpx.HTTPError, family: str, provider: str) -> ProviderError:
    """Translate an httpx failure into a ProviderError of the given family."""
    if isinstance(error, httpx.HTTPStatusError):
        return provider_error_from_status(
            error.response.status_code,
            family,
            provider,
            retry_after=_retry_after(error.response),
        )
    if isinstance(error, httpx.TransportError):
        # Connect errors, timeouts, dropped connections
        return provider_error_from_status(None, family, provider)
    error_class = EmbeddingProviderError if family == "embedding" else AnswerGeneratorError
    return error_class(f"Request to {provider} failed")


class OllamaClient:
    """Async client for interacting with Ollama API."""

    provider = "ollama"

    def __init__(
        self,
        base_url: str = None,
        timeout: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize Ollama client.

        Args:
            base_url: Ollama API base URL (defaults to config.OLLAMA_BASE_URL)
            timeout: Request timeout in seconds (defaults to config.PROVIDER_TIMEOUT)
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = base_url or config.OLLAMA_BASE_URL
        self.timeout = timeout or config.PROVIDER_TIMEOUT
        self.transport = transport

    def _client(self, timeout: Optional[float] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout or self.timeout, transport=self.transport)

    async def chat(
        self,
        messages: List[Dict[str, str]],
        model: str = None,
        temperature: Optional[float] = None,
    ) -> Dict:
        """Send a non-streaming chat completion request to Ollama.

        Args:
            messages: List of message dicts with 'role' and 'content'
            model: Model to use (defaults to config.CHAT_MODEL)
            temperature: Sampling temperature (0.0-2.0)

        Returns:
            Response dict with 'message' containing 'content'

        Raises:
            AnswerGeneratorError: On API errors (auth, rate limit, unavailable)
        """
        model = model or config.CHAT_MODEL

        payload: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "stream": False,
        }

        if temperature is not None:
            payload["options"] = {"temperature": temperature}

        try:
            async with self._client() as client:
                logger.info(
                    "ollama_chat_request",
                    model=model,
                    message_count=len(messages),
                )

                response = await client.post(f"{self.base_url}/api/chat", json=payload)
                response.raise_for_status()

                data = response.json()

                logger.info(
                    "ollama_chat_response",
                    model=model,
                    response_length=len(data.get("message", {}).get("content", "")),
                )

                return data

        except httpx.HTTPError as e:
            logger.error(
                "ollama_chat_error",
                error=str(e),
                status_code=getattr(getattr(e, "response", None), "status_code", None),
                base_url=self.base_url,
            )
            raise map_http_error(e, "answer", self.provider) from e

    async def embeddings(self, prompt: str, model: str = None) -> Dict:
        """Generate embeddings for a text prompt.

        Args:
            prompt: Text to embed
            model: Model to use (defaults to config.EMBEDDING_MODEL)

        Returns:
            Response dict with 'embedding' list

        Raises:
            EmbeddingProviderError: On API errors
        """
        model = model or config.EMBEDDING_MODEL

        try:
            async with self._client() as client:
                logger.debug(
                    "ollama_embedding_request",
                    model=model,
                    prompt_length=len(prompt),
                )

                response = await client.post(
                    f"{self.base_url}/api/embeddings",
                    json={"model": model, "prompt": prompt},
                )
                response.raise_for_status()

                data = response.json()

                logger.debug(
                    "ollama_embedding_response",
                    model=model,
                    dimension=len(data.get("embedding", [])),
                )

                return data

        except httpx.HTTPError as e:
            logger.error("ollama_embedding_error", error=str(e))
            raise map_http_error(e, "embedding", self.provider) from e

    async def list_models(self) -> List[str]:
        """List all available Ollama models.

        Raises:
            AnswerGeneratorError: If Ollama cannot be reached
        """
        try:
            async with self._client(timeout=5.0) as client:
                response = await client.get(f"{self.base_url}/api/tags")
                response.raise_for_status()
                data = response.json()
                return [m["name"] for m in data.get("models", [])]
        except httpx.HTTPError as e:
            logger.error("ollama_list_models_error", error=str(e))
            raise map_http_error(e, "answer", self.provider) from e


class OpenAICompatibleClient:
    """Async client for OpenAI-style APIs (OpenRouter, OpenAI)."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        provider: str,
        timeout: float = None,
        extra_headers: Optional[Dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.provider = provider
        self.timeout = timeout or config.PROVIDER_TIMEOUT
        self.extra_headers = extra_headers or {}
        self.transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        headers.update(self.extra_headers)
        return headers

    async def _post(self, path: str, payload: Dict[str, Any], family: str) -> Dict:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    f"{self.base_url}{path}",
                    json=payload,
                    headers=self._headers(),
                )
                response.raise_for_status()
                return response.json()
        except httpx.HTTPError as e:
            logger.error(
                "provider_request_failed",
                provider=self.provider,
                path=path,
                error=str(e),
                status_code=getattr(getattr(e, "response", None), "status_code", None),
            )
            raise map_http_error(e, family, self.provider) from e

    async def chat_completion(
        self,
        messages: List[Dict[str, str]],
        model: str,
        max_tokens: int,
        temperature: float,
    ) -> Dict:
        """POST /chat/completions and return the decoded body."""
        return await self._post(
            "/chat/completions",
            {
                "model": model,
                "messages": messages,
                "max_tokens": max_tokens,
                "temperature": temperature,
            },
            family="answer",
        )

    async def embeddings(self, texts: List[str], model: str) -> Dict:
        """POST /embeddings for a batch of texts."""
        return await self._post(
            "/embeddings",
            {"model": model, "input": texts},
            family="embedding",
        )


class AnswerGenerator(ABC):
    """Capability: turn a prompt into free text."""

    name = "answer_generator"

    @abstractmethod
    async def generate(self, prompt: str, system: Optional[str] = None) -> str:
        """Generate an answer for the prompt.

        Raises:
            AnswerGeneratorError: Or one of its auth / rate-limit / unavailable sub-kinds
        """

    async def check_ready(self) -> bool:
        """Whether the provider looks reachable. Defaults to True."""
        return True


class OllamaAnswerGenerator(AnswerGenerator):
    """Answer generation through a local Ollama chat model."""

    name = "ollama"

    def __init__(self, client: Optional[OllamaClient] = None, model: str = None):
        self.client = client or OllamaClient()
        self.model = model or config.CHAT_MODEL

    async def generate(self, prompt: str, system: Optional[str] = None) -> str:
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        data = await self.client.chat(
            messages,
            model=self.model,
            temperature=config.ANSWER_TEMPERATURE,
        )
        return data.get("message", {}).get("content", "").strip()

    async def check_ready(self) -> bool:
        models = await self.client.list_models()
        return self.model in models


class OpenRouterAnswerGenerator(AnswerGenerator):
    """Answer generation through OpenRouter's chat completions API."""

    name = "openrouter"

    def __init__(
        self,
        client: Optional[OpenAICompatibleClient] = None,
        model: str = None,
        max_tokens: int = None,
        temperature: float = None,
    ):
        if client is None:
            if not config.OPENROUTER_API_KEY:
                raise ConfigurationError("OPENROUTER_API_KEY is required for the openrouter provider")
            client = OpenAICompatibleClient(
                base_url=config.OPENROUTER_BASE_URL,
                api_key=config.OPENROUTER_API_KEY,
                provider="openrouter",
                extra_headers={"X-Title": "DocQA"},
            )
        self.client = client
        self.model = model or config.OPENROUTER_MODEL
        self.max_tokens = max_tokens or config.ANSWER_MAX_TOKENS
        self.temperature = config.ANSWER_TEMPERATURE if temperature is None else temperature

    async def generate(self, prompt: str, system: Optional[str] = None) -> str:
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        data = await self.client.chat_completion(
            messages,
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )

        choices = data.get("choices") or []
        answer = ""
        if choices:
            answer = (choices[0].get("message") or {}).get("content") or ""

        logger.info(
            "llm_response_generated",
            model=self.model,
            response_length=len(answer),
            tokens_used=(data.get("usage") or {}).get("total_tokens", "unknown"),
        )
        return answer.strip()


def create_answer_generator(provider: str = None) -> AnswerGenerator:
    """Build the answer generator selected by configuration.

    Raises:
        ConfigurationError: If the provider name is unknown
    """
    provider = (provider or config.ANSWER_PROVIDER).lower()

    if provider == "ollama":
        return OllamaAnswerGenerator()
    if provider == "openrouter":
        return OpenRouterAnswerGenerator()

    raise ConfigurationError(f"Unknown answer provider: {provider}")

"""Model invocation clients.

``GatewayLLMClient`` talks to an OpenAI-compatible chat completions gateway
with httpx, retrying with exponential backoff (tenacity) only when the
gateway is temporarily unavailable (429, 503, connection errors, read
timeouts). ``OllamaLLMClient`` talks to a local Ollama server.
"""

import logging
from typing import Protocol

import httpx
import ollama
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from config import settings

logger = logging.getLogger(__name__)


class LLMServiceUnavailable(Exception):
    """Model backend is temporarily unavailable (retryable: 429, 503, connection error)."""


class LLMServiceError(Exception):
    """Model backend returned a non-retryable error or an unusable response."""


class LLMClient(Protocol):
    async def complete(self, prompt: str, *, temperature: float, max_output_tokens: int) -> str:
        ...


def _error_detail(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:200] or f"HTTP {resp.status_code}"

    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if error:
            return str(error)
        if body.get("detail"):
            return str(body["detail"])
    return f"HTTP {resp.status_code}"


class GatewayLLMClient:
    """HTTP client for a chat completions gateway with retry and backoff."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        model: str | None = None,
        timeout: int | None = None,
        connect_timeout: int | None = None,
        retry_attempts: int | None = None,
        retry_delay: float | None = None,
        retry_backoff: float | None = None,
    ):
        self._base_url = (base_url or settings.LLM_BASE_URL).rstrip("/")
        self._model = model or settings.LLM_MODEL
        self._retry_attempts = retry_attempts if retry_attempts is not None else settings.LLM_RETRY_ATTEMPTS
        self._retry_delay = retry_delay if retry_delay is not None else settings.LLM_RETRY_DELAY
        self._retry_backoff = retry_backoff if retry_backoff is not None else settings.LLM_RETRY_BACKOFF

        read_timeout = timeout if timeout is not None else settings.LLM_TIMEOUT_SECONDS
        conn_timeout = connect_timeout if connect_timeout is not None else settings.LLM_CONNECT_TIMEOUT

        headers = {}
        key = api_key if api_key is not None else settings.LLM_API_KEY
        if key:
            headers["Authorization"] = f"Bearer {key}"

        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers=headers,
            timeout=httpx.Timeout(
                connect=float(conn_timeout),
                read=float(read_timeout),
                write=30.0,
                pool=30.0,
            ),
        )

    @property
    def model(self) -> str:
        return self._model

    async def aclose(self) -> None:
        await self._client.aclose()

    async def complete(self, prompt: str, *, temperature: float, max_output_tokens: int) -> str:
        """Send one prompt and return the completion text.

        Raises LLMServiceUnavailable (after retries) or LLMServiceError.
        """
        payload = {
            "model": self._model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": temperature,
            "max_tokens": max_output_tokens,
        }
        return await self._complete_with_retry(payload)

    async def _complete_with_retry(self, payload: dict) -> str:
        """Retry wrapper, configured per instance."""

        @retry(
            retry=retry_if_exception_type(LLMServiceUnavailable),
            stop=stop_after_attempt(self._retry_attempts),
            wait=wait_exponential(
                multiplier=self._retry_delay,
                exp_base=self._retry_backoff,
                max=30,
            ),
            reraise=True,
            before_sleep=lambda state: logger.warning(
                "Model gateway unavailable, retrying in %.1fs (attempt %d/%d)",
                state.next_action.sleep,  # type: ignore[union-attr]
                state.attempt_number,
                self._retry_attempts,
            ),
        )
        async def _do_complete() -> str:
            return await self._send_completion(payload)

        return await _do_complete()

    async def _send_completion(self, payload: dict) -> str:
        """Send a single completion request."""
        try:
            resp = await self._client.post("/chat/completions", json=payload)
        except (httpx.ConnectError, httpx.ConnectTimeout) as e:
            logger.warning("Model gateway connection failed: %s", e)
            raise LLMServiceUnavailable(f"Cannot connect to model gateway: {e}") from e
        except httpx.ReadTimeout as e:
            logger.warning("Model gateway read timeout: %s", e)
            raise LLMServiceUnavailable(f"Model gateway read timeout: {e}") from e
        except httpx.HTTPError as e:
            logger.error("Model gateway HTTP error: %s", e)
            raise LLMServiceError(f"Model gateway HTTP error: {e}") from e

        if resp.status_code in (429, 503):
            detail = _error_detail(resp)
            logger.warning("Model gateway returned %d: %s", resp.status_code, detail)
            raise LLMServiceUnavailable(detail)

        if resp.status_code != 200:
            detail = _error_detail(resp)
            logger.error("Model gateway error %d: %s", resp.status_code, detail)
            raise LLMServiceError(detail)

        try:
            data = resp.json()
            content = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise LLMServiceError(f"Unexpected completion payload: {e}") from e

        text = content or ""
        logger.info("Completion received (%d chars)", len(text))
        return text

    async def health(self) -> dict:
        """Check gateway reachability. Returns a status dict, never raises."""
        try:
            resp = await self._client.get("/models", timeout=10.0)
        except httpx.HTTPError as e:
            logger.warning("Model gateway health check failed: %s", e)
            return {"status": "unreachable", "error": str(e)}

        if resp.status_code != 200:
            return {"status": "degraded", "model": self._model, "error": _error_detail(resp)}
        return {"status": "healthy", "model": self._model}


class OllamaLLMClient:
    """Completion client for a local Ollama server."""

    def __init__(self, host: str | None = None, model: str | None = None):
        self._model = model or settings.OLLAMA_MODEL
        self._client = ollama.AsyncClient(host=host or settings.OLLAMA_URL)

    @property
    def model(self) -> str:
        return self._model

    async def complete(self, prompt: str, *, temperature: float, max_output_tokens: int) -> str:
        try:
            response = await self._client.chat(
                model=self._model,
                messages=[{"role": "user", "content": prompt}],
                options={"temperature": temperature, "num_predict": max_output_tokens},
            )
        except ollama.ResponseError as e:
            logger.error("Ollama error %s: %s", e.status_code, e.error)
            if e.status_code in (429, 503):
                raise LLMServiceUnavailable(e.error) from e
            raise LLMServiceError(e.error) from e
        except (ConnectionError, httpx.TransportError) as e:
            logger.warning("Ollama connection failed: %s", e)
            raise LLMServiceUnavailable(f"Cannot connect to Ollama: {e}") from e

        # ollama v0.4+ returns Pydantic ChatResponse, use attribute access
        text = response.message.content or ""
        logger.info("Ollama completion received (%d chars)", len(text))
        return text

    async def health(self) -> dict:
        try:
            models = await self._client.list()
        except (ConnectionError, httpx.TransportError, ollama.ResponseError) as e:
            logger.warning("Ollama health check failed: %s", e)
            return {"status": "unreachable", "error": str(e)}

        names = [m.model for m in models.models]
        available = any(self._model in (name or "") for name in names)
        return {
            "status": "healthy" if available else "degraded",
            "model": self._model,
            "model_available": available,
        }


def create_llm_client() -> GatewayLLMClient | OllamaLLMClient | None:
    """Build the configured backend, or None when it is not configured."""
    provider = settings.LLM_PROVIDER.strip().lower()
    if provider == "ollama":
        if not settings.OLLAMA_MODEL:
            logger.info("Ollama selected but OLLAMA_MODEL is empty, model calls disabled")
            return None
        return OllamaLLMClient()

    if provider != "gateway":
        raise ValueError(f"Unsupported LLM_PROVIDER: {settings.LLM_PROVIDER}")

    if not settings.LLM_BASE_URL:
        logger.info("Model gateway not configured (LLM_BASE_URL is empty), model calls disabled")
        return None
    return GatewayLLMClient()

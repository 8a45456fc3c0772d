"""
LLM client factory and the model client used by SQL generation.

``create_llm`` builds a LangChain chat model for the configured provider.
``LangChainModelClient`` wraps it behind ``complete(prompt, max_tokens)``
with a timeout, bounded retry and a circuit breaker, and maps every
provider failure to ``ModelError``.
"""

import asyncio
from typing import Optional, Protocol

from langchain_core.language_models import BaseChatModel
from loguru import logger

from bizsql.config.settings import settings
from bizsql.llm.resilience import CircuitBreaker, retry_async
from bizsql.llm.response_utils import extract_text_from_response
from bizsql.utils.cancellation import CancellationToken
from bizsql.utils.errors import CircuitOpenError, ModelError, PipelineCancelled


def _validate_ollama_model(model_to_use: str) -> None:
    """Check the Ollama server is reachable and has the model pulled."""
    import httpx

    try:
        response = httpx.get(f"{settings.ollama_base_url}/api/tags", timeout=3.0)
        response.raise_for_status()
        models_data = response.json()
    except httpx.HTTPError as e:
        error_msg = (
            f"Could not connect to Ollama server at {settings.ollama_base_url}. "
            f"Make sure Ollama is running. Error: {e}"
        )
        logger.error(f"❌ {error_msg}")
        raise ConnectionError(error_msg) from e

    available_models = [m.get("name", "").split(":")[0] for m in models_data.get("models", [])]
    if model_to_use.split(":")[0] not in available_models:
        error_msg = (
            f"Ollama model '{model_to_use}' is not available on the server. "
            f"Available models: {', '.join(available_models) if available_models else 'None'}. "
            f"To install: ollama pull {model_to_use}"
        )
        logger.error(f"❌ {error_msg}")
        raise ValueError(error_msg)
    logger.debug(f"✅ Ollama model '{model_to_use}' is available")


def create_llm(
    temperature: Optional[float] = None,
    max_completion_tokens: Optional[int] = None,
    model: Optional[str] = None,
) -> BaseChatModel:
    """
    Factory function to create the LLM for the configured provider.

    Returns:
        LangChain ChatModel instance (ChatOpenAI or ChatOllama)
    """
    provider = settings.llm_provider.lower()
    max_tokens = max_completion_tokens or settings.max_output_tokens
    temperature = temperature if temperature is not None else settings.openai_temperature

    if provider == "openai":
        from langchain_openai import ChatOpenAI

        if not settings.openai_api_key:
            raise ValueError("OPENAI_API_KEY is required when LLM_PROVIDER=openai")

        logger.info(f"✅ LLM Provider: OpenAI | Model: {model or settings.openai_model}")
        return ChatOpenAI(
            model=model or settings.openai_model,
            api_key=settings.openai_api_key,
            temperature=temperature,
            max_completion_tokens=max_tokens,
        )

    elif provider == "ollama":
        from langchain_community.chat_models import ChatOllama

        model_to_use = model or settings.ollama_model
        _validate_ollama_model(model_to_use)
        logger.info(f"✅ LLM Provider: Ollama | Base URL: {settings.ollama_base_url} | Model: {model_to_use}")
        return ChatOllama(
            model=model_to_use,
            base_url=settings.ollama_base_url,
            temperature=temperature,
            num_predict=max_tokens,  # Ollama uses num_predict instead of max_completion_tokens
        )

    else:
        raise ValueError(f"Unsupported LLM provider: {provider}. Supported: 'openai', 'ollama'")


class ModelClient(Protocol):
    """Generative model used for SQL generation and correction."""

    model_name: str

    async def complete(self, prompt: str, max_tokens: int, token: Optional[CancellationToken] = None) -> str:
        ...


class LangChainModelClient:
    """``ModelClient`` over any LangChain chat model."""

    def __init__(
        self,
        llm: BaseChatModel,
        model_name: Optional[str] = None,
        breaker: Optional[CircuitBreaker] = None,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
    ):
        self.llm = llm
        self.model_name = model_name or getattr(llm, "model_name", None) or getattr(llm, "model", None) or type(llm).__name__
        self.breaker = breaker or CircuitBreaker(
            "model",
            failure_threshold=settings.circuit_breaker_threshold,
            reset_timeout=settings.circuit_breaker_reset_seconds,
        )
        self.timeout = settings.model_timeout_seconds if timeout is None else timeout
        self.max_attempts = settings.retry_max_attempts if max_attempts is None else max_attempts
        self.base_delay = settings.retry_base_delay if base_delay is None else base_delay

    @classmethod
    def from_settings(cls) -> "LangChainModelClient":
        llm = create_llm()
        model_name = settings.openai_model if settings.llm_provider.lower() == "openai" else settings.ollama_model
        return cls(llm, model_name=model_name)

    async def _invoke(self, prompt: str, max_tokens: int, token: Optional[CancellationToken]) -> str:
        runnable = self.llm.bind(max_tokens=max_tokens) if max_tokens else self.llm
        if token is not None:
            token.raise_if_cancelled("generation")
        call = runnable.ainvoke(prompt)
        if token is not None:
            response = await token.run(call, timeout=self.timeout, stage="generation")
        else:
            response = await asyncio.wait_for(call, timeout=self.timeout)
        return extract_text_from_response(response)

    async def complete(self, prompt: str, max_tokens: int, token: Optional[CancellationToken] = None) -> str:
        """
        Raises:
            ModelError: provider failure after retries, or open circuit
            PipelineCancelled: the token fired while waiting
        """
        try:
            text = await retry_async(
                lambda: self.breaker.call(lambda: self._invoke(prompt, max_tokens, token)),
                max_attempts=self.max_attempts,
                base_delay=self.base_delay,
                description=f"model {self.model_name}",
            )
        except PipelineCancelled:
            raise
        except CircuitOpenError as e:
            raise ModelError(str(e), stage="generation") from e
        except Exception as e:
            raise ModelError(f"Model call failed: {e}", stage="generation") from e

        if not text.strip():
            raise ModelError("Model returned an empty response", stage="generation")
        return text

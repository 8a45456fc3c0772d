"""
Embedding model factory for semantic schema retrieval.
"""

from typing import Optional

from langchain_core.embeddings import Embeddings
from loguru import logger

from bizsql.config.settings import settings


def create_embeddings(model: Optional[str] = None) -> Optional[Embeddings]:
    """
    Create the LangChain embeddings client for the configured provider.

    Returns None when no embedding backend is configured, in which case the
    semantic retrieval strategy is skipped.
    """
    provider = settings.llm_provider.lower()

    if provider == "openai":
        if not settings.openai_api_key:
            logger.warning("⚠️  OPENAI_API_KEY not set; semantic schema retrieval disabled")
            return None
        from langchain_openai import OpenAIEmbeddings

        return OpenAIEmbeddings(model=model or settings.openai_embedding_model, api_key=settings.openai_api_key)

    if provider == "ollama":
        from langchain_community.embeddings import OllamaEmbeddings

        return OllamaEmbeddings(model=model or settings.ollama_model, base_url=settings.ollama_base_url)

    logger.warning(f"⚠️  Unknown LLM provider '{provider}'; semantic schema retrieval disabled")
    return None

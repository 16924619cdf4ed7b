"""
LLM Client for a local Ollama service.

Serves both collaborators that need a model: text generation for the SQL
generator and embeddings for semantic search. Every request carries a
timeout; failures are logged and reported as None, never raised.
"""

import requests
import structlog

from clinical_insights.core.resolution_config import (
    OLLAMA_BASE_URL,
    OLLAMA_DEFAULT_MODEL,
    OLLAMA_EMBED_MODEL,
    OLLAMA_TIMEOUT_SECONDS,
)

logger = structlog.get_logger()


class OllamaClient:
    """
    Client for a local Ollama LLM service.

    Provides connection checks, JSON-mode generation and embeddings.
    """

    def __init__(
        self,
        model: str = OLLAMA_DEFAULT_MODEL,
        base_url: str = OLLAMA_BASE_URL,
        timeout: float = OLLAMA_TIMEOUT_SECONDS,
        embed_model: str = OLLAMA_EMBED_MODEL,
    ):
        """
        Initialize Ollama client.

        Args:
            model: Generation model name
            base_url: Ollama service URL
            timeout: Request timeout in seconds
            embed_model: Embedding model name
        """
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.embed_model = embed_model
        self._connection_checked = False
        self._is_available = False

    def is_available(self) -> bool:
        """Check (once) whether the Ollama service is reachable."""
        if self._connection_checked:
            return self._is_available

        try:
            response = requests.get(f"{self.base_url}/api/tags", timeout=self.timeout)
            self._is_available = response.status_code == 200
        except requests.RequestException as e:
            logger.warning("ollama_connection_failed", error=str(e), base_url=self.base_url)
            self._is_available = False

        self._connection_checked = True
        return self._is_available

    def generate(
        self,
        prompt: str,
        system_prompt: str | None = None,
        json_mode: bool = True,
        model: str | None = None,
    ) -> str | None:
        """
        Generate a completion.

        Args:
            prompt: User prompt
            system_prompt: Optional system prompt
            json_mode: Ask the model for a JSON reply
            model: Override the default generation model

        Returns:
            Generated text, or None on error/timeout
        """
        if not self.is_available():
            logger.warning("ollama_not_available", model=model or self.model)
            return None

        payload: dict = {"model": model or self.model, "prompt": prompt, "stream": False}
        if system_prompt:
            payload["system"] = system_prompt
        if json_mode:
            payload["format"] = "json"

        result = self._post("/api/generate", payload, model=payload["model"])
        return result.get("response") if result else None

    def embed(self, text: str) -> list[float] | None:
        """
        Embed text with the embedding model.

        Returns:
            Embedding vector, or None on error/timeout
        """
        if not self.is_available():
            logger.warning("ollama_not_available", model=self.embed_model)
            return None

        result = self._post("/api/embeddings", {"model": self.embed_model, "prompt": text}, model=self.embed_model)
        if not result:
            return None

        embedding = result.get("embedding")
        if not isinstance(embedding, list) or not embedding:
            logger.warning("ollama_embedding_empty", model=self.embed_model)
            return None
        return [float(v) for v in embedding]

    def _post(self, path: str, payload: dict, model: str) -> dict | None:
        try:
            response = requests.post(f"{self.base_url}{path}", json=payload, timeout=self.timeout)
            if response.status_code != 200:
                logger.warning("ollama_request_failed", path=path, status_code=response.status_code, model=model)
                return None
            return response.json()
        except requests.Timeout:
            logger.warning("ollama_timeout", path=path, timeout_seconds=self.timeout, model=model)
            return None
        except (requests.RequestException, ValueError) as e:
            logger.warning("ollama_request_error", path=path, error=str(e), model=model)
            return None

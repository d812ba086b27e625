"""HTTP clients for the hosted model APIs with error handling.

- GroqClient: chat completions used to generate answers
- CloudflareEmbedder: Workers AI text embeddings
"""
import httpx
from typing import List, Dict, Optional, Sequence
import structlog

from kortex import config
from kortex.exceptions import ConfigurationError
from kortex.rag.models import GeneratedAnswer, TokenUsage

logger = structlog.get_logger()


class GroqClient:
    """Async client for the Groq OpenAI-compatible chat API."""

    def __init__(
        self,
        api_key: str = None,
        base_url: str = None,
        model: str = None,
        fallback_model: Optional[str] = None,
        timeout: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize Groq client.

        Args:
            api_key: Groq API key (defaults to config.GROQ_API_KEY)
            base_url: API base URL (defaults to config.GROQ_BASE_URL)
            model: Primary chat model (defaults to config.CHAT_MODEL)
            fallback_model: Model tried once if the primary call fails
                (defaults to config.CHAT_FALLBACK_MODEL, "" disables it)
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.api_key = api_key if api_key is not None else config.GROQ_API_KEY
        self.base_url = (base_url or config.GROQ_BASE_URL).rstrip("/")
        self.model = model or config.CHAT_MODEL
        self.fallback_model = (
            fallback_model if fallback_model is not None else config.CHAT_FALLBACK_MODEL
        )
        self.timeout = timeout or config.HTTP_TIMEOUT
        self.transport = transport

        if not self.api_key:
            logger.warning("groq_api_key_missing")

    async def chat(
        self,
        messages: List[Dict[str, str]],
        model: str = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> Dict:
        """Send a chat completion request to Groq.

        Args:
            messages: List of message dicts with 'role' and 'content'
            model: Model to use (defaults to the primary model)
            temperature: Sampling temperature
            max_tokens: Completion token cap

        Returns:
            Raw response dict with 'choices' and optional 'usage'

        Raises:
            ConfigurationError: If no API key is configured
            httpx.HTTPError: On API errors
        """
        if not self.api_key:
            raise ConfigurationError("Groq", "GROQ_API_KEY")

        model = model or self.model

        payload = {
            "model": model,
            "messages": messages,
            "temperature": config.CHAT_TEMPERATURE if temperature is None else temperature,
            "max_tokens": max_tokens or config.CHAT_MAX_TOKENS,
            "top_p": 1,
            "stream": False,
        }

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self.transport
            ) as client:
                logger.info(
                    "groq_chat_request",
                    model=model,
                    message_count=len(messages),
                )

                response = await client.post(
                    f"{self.base_url}/chat/completions",
                    json=payload,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
                response.raise_for_status()

                return response.json()

        except httpx.ConnectError as e:
            logger.error("groq_connection_error", error=str(e), base_url=self.base_url)
            raise
        except httpx.HTTPError as e:
            logger.error(
                "groq_http_error",
                error=str(e),
                model=model,
                status_code=getattr(getattr(e, "response", None), "status_code", None),
            )
            raise

    async def generate(self, messages: List[Dict[str, str]]) -> GeneratedAnswer:
        """Generate an answer, falling back to the secondary model once.

        Returns:
            GeneratedAnswer with text, token usage and the model that answered

        Raises:
            ConfigurationError: If no API key is configured
            httpx.HTTPError: If both models fail
            RuntimeError: If the response has no content
        """
        model = self.model
        try:
            data = await self.chat(messages, model=model)
        except httpx.HTTPError as e:
            if not self.fallback_model or self.fallback_model == self.model:
                raise
            logger.warning(
                "groq_falling_back",
                primary_model=self.model,
                fallback_model=self.fallback_model,
                error=str(e),
            )
            model = self.fallback_model
            data = await self.chat(messages, model=model)

        choices = data.get("choices") or []
        content = choices[0].get("message", {}).get("content") if choices else None
        if not content:
            raise RuntimeError("No content in Groq response")

        usage = _parse_usage(data.get("usage"))

        logger.info(
            "groq_chat_response",
            model=model,
            response_length=len(content),
            total_tokens=usage.total if usage else None,
        )

        return GeneratedAnswer(text=content, usage=usage, model=model)


def _parse_usage(usage: Optional[Dict]) -> Optional[TokenUsage]:
    if not usage:
        return None
    return TokenUsage(
        prompt=int(usage.get("prompt_tokens", 0)),
        completion=int(usage.get("completion_tokens", 0)),
        total=int(usage.get("total_tokens", 0)),
    )


class CloudflareEmbedder:
    """Async client for Cloudflare Workers AI embeddings."""

    def __init__(
        self,
        account_id: str = None,
        api_token: str = None,
        model: str = None,
        base_url: str = None,
        timeout: float = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the embedder.

        Args:
            account_id: Cloudflare account id (defaults to config)
            api_token: Cloudflare API token (defaults to config)
            model: Embedding model (defaults to config.EMBEDDING_MODEL)
            base_url: Accounts API base URL (defaults to config)
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.account_id = account_id if account_id is not None else config.CLOUDFLARE_ACCOUNT_ID
        self.api_token = api_token if api_token is not None else config.CLOUDFLARE_API_TOKEN
        self.model = model or config.EMBEDDING_MODEL
        self.base_url = (base_url or config.CLOUDFLARE_BASE_URL).rstrip("/")
        self.timeout = timeout or config.HTTP_TIMEOUT
        self.transport = transport

        if not self.account_id or not self.api_token:
            logger.warning("cloudflare_credentials_missing")

    @property
    def url(self) -> str:
        return f"{self.base_url}/{self.account_id}/ai/run/{self.model}"

    async def embed(self, text: str) -> List[float]:
        """Generate the embedding for one text."""
        vectors = await self.embed_batch([text])
        if len(vectors) != 1:
            raise RuntimeError(f"Expected 1 embedding, got {len(vectors)}")
        return vectors[0]

    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        """Generate embeddings for several texts in one request.

        Raises:
            ConfigurationError: If credentials are missing
            httpx.HTTPError: On API errors
            RuntimeError: If the response has no embedding data
        """
        if not self.account_id or not self.api_token:
            raise ConfigurationError(
                "Cloudflare Workers AI", "CLOUDFLARE_ACCOUNT_ID and CLOUDFLARE_API_TOKEN"
            )

        if not texts:
            return []

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self.transport
            ) as client:
                logger.debug(
                    "cloudflare_embedding_request",
                    model=self.model,
                    text_count=len(texts),
                )

                response = await client.post(
                    self.url,
                    json={"text": list(texts)},
                    headers={"Authorization": f"Bearer {self.api_token}"},
                )
                response.raise_for_status()

                data = response.json()

        except httpx.HTTPError as e:
            logger.error("cloudflare_embedding_error", error=str(e), model=self.model)
            raise

        # Workers AI returns {"result": {"data": [[...], ...]}}
        vectors = (data.get("result") or {}).get("data")
        if not isinstance(vectors, list) or not all(isinstance(v, list) for v in vectors):
            raise RuntimeError("Invalid embedding response from Cloudflare")

        logger.debug(
            "cloudflare_embedding_response",
            model=self.model,
            count=len(vectors),
            dimension=len(vectors[0]) if vectors else 0,
        )

        return vectors

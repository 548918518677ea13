"""Embedding providers.

``EmbeddingProvider`` is the contract every semantic component depends on:
map text to a fixed-width dense vector. :class:`HttpEmbeddingProvider` talks
to an OpenAI-compatible ``/embeddings`` endpoint through ``httpx``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional, Protocol, runtime_checkable

import httpx
import numpy as np
from pydantic import Field

from ..errors import EmbeddingUnavailableError
from ..schemas.base import BaseSchema
from .index import as_vector

logger = logging.getLogger(__name__)


@runtime_checkable
class EmbeddingProvider(Protocol):
    async def embed(self, text: str) -> np.ndarray: ...


class EmbeddingRequestDTO(BaseSchema):
    model: str
    input: List[str]
    dimensions: Optional[int] = None


class EmbeddingItemDTO(BaseSchema):
    model_config = {"extra": "ignore"}

    index: int = 0
    embedding: List[float]


class EmbeddingResponseDTO(BaseSchema):
    model_config = {"extra": "ignore"}

    data: List[EmbeddingItemDTO] = Field(min_length=1)


class HttpEmbeddingProvider:
    """Embedding provider for OpenAI-compatible HTTP APIs.

    - POST ``{base_url}/embeddings`` with ``EmbeddingRequestDTO``
    - Bearer auth when an API key is configured
    - Response validated through ``EmbeddingResponseDTO``
    """

    def __init__(
        self,
        base_url: str,
        model: str,
        *,
        api_key: Optional[str] = None,
        dimension: Optional[int] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._api_key = api_key
        self._dimension = dimension
        self._http = client or httpx.AsyncClient(timeout=timeout_seconds)
        self._owns_client = client is None

    def _headers(self) -> Dict[str, str]:
        headers: Dict[str, str] = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def embed(self, text: str) -> np.ndarray:
        """Embed one text.

        Raises:
            httpx.HTTPStatusError: If the HTTP response indicates an error.
            httpx.TransportError: For transport-level HTTP issues.
            pydantic.ValidationError: If the payload is not an embeddings response.
        """
        payload = EmbeddingRequestDTO(model=self._model, input=[text], dimensions=self._dimension)
        logger.debug(f"HttpEmbeddingProvider.embed: POST {self._base_url}/embeddings")
        r = await self._http.post(
            f"{self._base_url}/embeddings",
            headers=self._headers(),
            json=payload.model_dump(exclude_none=True),
        )
        r.raise_for_status()
        data = EmbeddingResponseDTO.model_validate(r.json())
        return as_vector(data.data[0].embedding)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()


async def embed_with_timeout(provider: EmbeddingProvider, text: str, timeout_seconds: float) -> np.ndarray:
    """Embed ``text`` within ``timeout_seconds``.

    Raises:
        EmbeddingUnavailableError: on timeout or any provider failure.
    """
    try:
        return await asyncio.wait_for(provider.embed(text), timeout=timeout_seconds)
    except asyncio.TimeoutError:
        raise EmbeddingUnavailableError(f"timed out after {timeout_seconds}s") from None
    except EmbeddingUnavailableError:
        raise
    except Exception as e:
        raise EmbeddingUnavailableError(f"{type(e).__name__}: {e}") from e

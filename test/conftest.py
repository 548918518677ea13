from __future__ import annotations

import zlib
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import httpx
import numpy as np
import pytest

from capmesh_ai.engine.errors import EmbeddingUnavailableError

# Load dotenv files early so test fixtures can read secrets via os.getenv
try:  # pragma: no cover
    from dotenv import load_dotenv

    TEST_ROOT = Path(__file__).resolve().parent
    # Load test/.env first, then fallback to test/.env.example for defaults
    load_dotenv(TEST_ROOT / ".env", override=False)
    load_dotenv(TEST_ROOT / ".env.example", override=False)
except Exception:
    pass


class FakeEmbedder:
    """Deterministic in-process embedding provider.

    Known texts map to fixed vectors; any other text gets a stable
    pseudo-random unit vector. ``calls`` records every text embedded.
    """

    def __init__(self, vectors: Optional[Dict[str, Iterable[float]]] = None, dim: int = 4) -> None:
        self.vectors = {k: np.asarray(list(v), dtype=np.float64) for k, v in (vectors or {}).items()}
        self.dim = dim
        self.calls: List[str] = []
        self.fail = False

    async def embed(self, text: str) -> np.ndarray:
        self.calls.append(text)
        if self.fail:
            raise EmbeddingUnavailableError("provider down")
        if text in self.vectors:
            return self.vectors[text]
        rng = np.random.default_rng(zlib.crc32(text.encode("utf-8")))
        vec = rng.normal(size=self.dim)
        return vec / np.linalg.norm(vec)


@pytest.fixture
def fake_embedder_factory():
    """Build ``FakeEmbedder`` instances inside tests."""
    return FakeEmbedder


@pytest.fixture(autouse=True)
def _global_offline_http_guard(monkeypatch: pytest.MonkeyPatch):
    allowed_prefixes: Iterable[str] = (
        "http://mock",
        "https://mock",
        "http://localhost",
        "http://127.0.0.1",
        "http://0.0.0.0",
        "/",  # Allow relative paths (used by ASGI transport)
    )

    orig_sync = httpx._client.Client.request
    orig_async = httpx._client.AsyncClient.request

    def _is_allowed(url_str: str) -> bool:
        return any(url_str.startswith(p) for p in allowed_prefixes)

    def offline_sync(self, method, url, *args, **kwargs):
        url_str = str(url)
        if _is_allowed(url_str):
            return orig_sync(self, method, url, *args, **kwargs)
        raise RuntimeError(f"External HTTP blocked by global offline guard: {url_str}")

    async def offline_async(self, method, url, *args, **kwargs):
        url_str = str(url)
        if _is_allowed(url_str):
            return await orig_async(self, method, url, *args, **kwargs)
        raise RuntimeError(f"External HTTP blocked by global offline guard (async): {url_str}")

    monkeypatch.setattr(httpx._client.Client, "request", offline_sync, raising=True)
    monkeypatch.setattr(httpx._client.AsyncClient, "request", offline_async, raising=True)
    yield

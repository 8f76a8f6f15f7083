"""
Shared pytest setup.

Puts src/ on sys.path so the tests run against the working tree without
an install, and provides small deterministic test doubles.
"""

import sys
from pathlib import Path

import pytest

# Add src to PYTHONPATH
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from langchain_core.embeddings import Embeddings  # noqa: E402


class KeywordEmbeddings(Embeddings):
    """Embeds text as keyword counts over a fixed vocabulary."""

    def __init__(self, vocabulary: list[str]):
        self.vocabulary = vocabulary
        self.dimensions = len(vocabulary)
        self.calls = 0

    def embed_query(self, text: str) -> list[float]:
        self.calls += 1
        words = text.lower().split()
        return [float(words.count(term)) for term in self.vocabulary]

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [self.embed_query(t) for t in texts]


class FailingEmbeddings(Embeddings):
    def embed_query(self, text: str) -> list[float]:
        raise RuntimeError("embedding service down")

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        raise RuntimeError("embedding service down")


def ten_tokens(text: str) -> int:
    """Token counter charging every turn 10 tokens."""
    return 10


@pytest.fixture
def keyword_embeddings():
    return KeywordEmbeddings(["python", "java", "deploy", "vault", "weather", "rain"])

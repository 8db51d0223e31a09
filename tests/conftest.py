"""
Shared test fixtures and pytest configuration.

Markers:
    @pytest.mark.embedding   : Requires sentence-transformers model downloadable

Run:
    pytest -m embedding               # only embedding model tests
    pytest -m "not embedding"         # skip them (fast CI)
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from repo_lens.rag.embedding_provider import EmbeddingProvider
from repo_lens.rag.models import ChunkType, CodeEmbedding, EmbeddingMetadata


def _embedding_model_available() -> bool:
    """Check if all-MiniLM-L6-v2 can be loaded (already cached or downloadable)."""
    try:
        from sentence_transformers import SentenceTransformer

        model = SentenceTransformer("all-MiniLM-L6-v2")
        vec = model.encode(["test"])
        return vec.shape[1] == 384
    except Exception:
        return False


_EMBEDDING_OK: Optional[bool] = None


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "embedding: requires sentence-transformers model available")


def pytest_collection_modifyitems(config, items):
    """Auto-skip tests whose infrastructure requirements are not met."""
    global _EMBEDDING_OK

    marked = [item for item in items if "embedding" in item.keywords]
    if not marked:
        return
    # Only load the model when something actually needs it
    if _EMBEDDING_OK is None:
        _EMBEDDING_OK = _embedding_model_available()

    skip_embedding = pytest.mark.skip(reason="Embedding model not available (all-MiniLM-L6-v2)")
    for item in marked:
        if not _EMBEDDING_OK:
            item.add_marker(skip_embedding)


def write_files(root: Path, files: Dict[str, str]) -> Path:
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    return root


SAMPLE_FILES = {
    "pkg/__init__.py": "",
    "pkg/b.py": (
        "def foo(x):\n"
        "    \"\"\"Double x.\"\"\"\n"
        "    return x * 2\n"
    ),
    "pkg/a.py": (
        "from .b import foo\n"
        "\n"
        "\n"
        "def run(value):\n"
        "    # call into b\n"
        "    if value:\n"
        "        return foo(value)\n"
        "    return None\n"
    ),
    "pkg/models.py": (
        "from abc import ABC, abstractmethod\n"
        "\n"
        "\n"
        "class Base(ABC):\n"
        "    @abstractmethod\n"
        "    def handle(self, item):\n"
        "        ...\n"
        "\n"
        "\n"
        "class Child(Base):\n"
        "    limit: int = 3\n"
        "\n"
        "    def __init__(self, name):\n"
        "        self.name = name\n"
        "\n"
        "    def handle(self, item):\n"
        "        return validate_item(item)\n"
        "\n"
        "\n"
        "def validate_item(item):\n"
        "    return item is not None\n"
    ),
}


@pytest.fixture
def sample_repo(tmp_path) -> Path:
    """A small package: a.py imports b.py and calls foo; models.py has a class hierarchy."""
    return write_files(tmp_path / "repo", SAMPLE_FILES)


@pytest.fixture
def cache_dir(tmp_path) -> Path:
    return tmp_path / "cache"


def make_embedding(
    id: str,
    vector: List[float],
    source: str = "src/mod.py",
    type: ChunkType = ChunkType.FUNCTION,
    tags: Optional[List[str]] = None,
    complexity: Optional[int] = None,
    language: str = "python",
    last_modified: Optional[datetime] = None,
    content: str = "def f():\n    pass",
) -> CodeEmbedding:
    return CodeEmbedding(
        id=id,
        type=type,
        source=source,
        start_line=1,
        end_line=2,
        content=content,
        embedding=vector,
        metadata=EmbeddingMetadata(
            language=language,
            symbol_name=id,
            complexity=complexity,
            tags=tags or [],
            last_modified=last_modified or datetime.now(timezone.utc),
        ),
        hash=f"h-{id}",
    )


class FixedProvider(EmbeddingProvider):
    """Returns a preset vector per text, or ``default``."""

    def __init__(self, vectors, default, dims=None):
        super().__init__("fixed", "fixed-model", dims or len(default))
        self._vectors = vectors
        self._default = list(default)

    def _embed(self, texts):
        return [self._vectors.get(t, self._default) for t in texts]

    def estimate_cost(self, token_count):
        return 0.0

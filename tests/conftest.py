"""Pytest configuration and fixtures for CodeGraph Search tests."""

import asyncio
import shutil
import tempfile
from pathlib import Path
from typing import Callable, Dict, Generator, Iterable, List, Optional, Sequence, Tuple

import pytest

from codegraph_search.backends import InMemoryBackend, IndexDocument
from codegraph_search.config import SearchSettings, Settings
from codegraph_search.errors import BackendConnectionError
from codegraph_search.graph import CodeGraph, GraphBuilder
from codegraph_search.indexer import discover_files
from codegraph_search.models import ExtractedEntity, SearchHit
from codegraph_search.search import CodeSearchService


@pytest.fixture(autouse=True)
def _isolated_config(tmp_path: Path, monkeypatch):
    """Point the config file at an empty temp location for every test."""
    monkeypatch.setattr("codegraph_search.config.CONFIG_FILE", tmp_path / "config.toml")
    monkeypatch.setattr("codegraph_search.config.INDEX_DIR", tmp_path / "indexes")


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmp = Path(tempfile.mkdtemp())
    yield tmp
    shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def sample_project_path() -> Path:
    """Get path to sample test project."""
    return Path(__file__).parent / "fixtures" / "sample_project"


@pytest.fixture
def sample_files(sample_project_path: Path):
    return discover_files(sample_project_path)


@pytest.fixture
def settings() -> Settings:
    """Fast settings: memory backend, short deadlines, quick retries."""
    return Settings(search=SearchSettings(
        backend="memory",
        embedding_dim=64,
        channel_timeout=1.0,
        max_retries=2,
        retry_backoff=0.0,
        max_workers=2,
    ))


@pytest.fixture
def sample_python_code() -> str:
    """Sample Python code for testing the extractor."""
    return '''"""Sample module for testing."""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Protocol

MAX_ITEMS = 10


def hello(name: str) -> str:
    """Say hello."""
    return f"Hello, {name}!"


class Shape(ABC):
    @abstractmethod
    def area(self) -> float:
        ...


class Drawable(Protocol):
    def draw(self) -> None:
        ...


class Color(Enum):
    RED = 1


class Calculator:
    """Simple calculator."""

    def add(self, a: int, b: int) -> int:
        """Add two numbers."""
        return a + b

    def multiply(self, a: int, b: int) -> int:
        """Multiply two numbers."""
        result = self.add(a, 0)
        for _ in range(b - 1):
            result = self.add(result, a)
        return result

    @staticmethod
    def _validate(value: int) -> None:
        if value < 0:
            raise ValueError(value)

    def __secret(self):
        try:
            hello("x")
        except KeyError:
            pass
'''


# ------------------------------------------------------------------
# Graph helpers
# ------------------------------------------------------------------

GraphFactory = Callable[..., Tuple[CodeGraph, Dict[str, str]]]


@pytest.fixture
def make_graph() -> GraphFactory:
    """Build a graph from names and ``(source, target, relation)`` triples.

    Returns the graph plus a ``name -> node_id`` map.
    """

    def _make(
        names: Sequence[str],
        edges: Iterable[Tuple[str, str, str]] = (),
        node_types: Optional[Dict[str, str]] = None,
        file_path: str = "pkg/mod.py",
        abstract: Iterable[str] = (),
    ) -> Tuple[CodeGraph, Dict[str, str]]:
        builder = GraphBuilder()
        ids: Dict[str, str] = {}
        abstract_names = set(abstract)
        for i, name in enumerate(names, 1):
            entity = ExtractedEntity(
                name=name,
                node_type=(node_types or {}).get(name, "function"),
                start_line=i,
                end_line=i,
                is_abstract=name in abstract_names,
            )
            ids[name] = builder.add_node(entity, file_path, "python")
        for source, target, relation in edges:
            builder.add_edge(ids[source], ids[target], relation)
        return builder.build(), ids

    return _make


@pytest.fixture
def chain_graph(make_graph: GraphFactory) -> Tuple[CodeGraph, Dict[str, str]]:
    """a -> b -> c -> d -> e over ``calls`` edges."""
    names = ["a", "b", "c", "d", "e"]
    edges = [(names[i], names[i + 1], "calls") for i in range(len(names) - 1)]
    return make_graph(names, edges)


# ------------------------------------------------------------------
# Backends
# ------------------------------------------------------------------

class FlakyBackend(InMemoryBackend):
    """In-memory backend whose channels can fail on demand."""

    def __init__(
        self,
        keyword_error: Optional[BaseException] = None,
        vector_error: Optional[BaseException] = None,
        fail_times: Optional[int] = None,
        delay: float = 0.0,
    ) -> None:
        super().__init__()
        self.keyword_error = keyword_error
        self.vector_error = vector_error
        self.fail_times = fail_times
        self.delay = delay
        self.keyword_calls = 0
        self.vector_calls = 0

    def _should_fail(self, calls: int) -> bool:
        return self.fail_times is None or calls <= self.fail_times

    async def keyword_query(self, query, limit, filters=None) -> List[SearchHit]:
        self.keyword_calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.keyword_error is not None and self._should_fail(self.keyword_calls):
            raise self.keyword_error
        return await super().keyword_query(query, limit, filters)

    async def vector_query(self, vector, limit, filters=None) -> List[SearchHit]:
        self.vector_calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.vector_error is not None and self._should_fail(self.vector_calls):
            raise self.vector_error
        return await super().vector_query(vector, limit, filters)


@pytest.fixture
def flaky_backend_cls():
    return FlakyBackend


@pytest.fixture
def connection_error() -> BackendConnectionError:
    return BackendConnectionError("connection refused")


@pytest.fixture
def documents() -> List[IndexDocument]:
    """Small hand-written corpus with 4-dimensional vectors."""
    return [
        IndexDocument(
            id="d1", content="def parse_config(path): load toml settings",
            identifier="parse_config", file_path="app/config.py", node_type="function",
            language="python", name="parse_config", vector=[1.0, 0.0, 0.0, 0.0],
        ),
        IndexDocument(
            id="d2", content="class ConfigLoader: reads configuration files",
            identifier="ConfigLoader", file_path="app/loader.py", node_type="class",
            language="python", name="ConfigLoader", vector=[0.9, 0.1, 0.0, 0.0],
        ),
        IndexDocument(
            id="d3", content="def sendEmail(user): deliver message over smtp",
            identifier="sendEmail", file_path="app/mail.py", node_type="function",
            language="python", name="sendEmail", vector=[0.0, 1.0, 0.0, 0.0],
            metadata={"owner": "mail-team"},
        ),
        IndexDocument(
            id="d4", content="function renderPage() { return html }",
            identifier="renderPage", file_path="web/page.js", node_type="function",
            language="javascript", name="renderPage", vector=[0.0, 0.0, 1.0, 0.0],
        ),
    ]


@pytest.fixture
def memory_backend(documents: List[IndexDocument]) -> InMemoryBackend:
    backend = InMemoryBackend()

    async def _load() -> None:
        await backend.ensure_index("test-index", 4)
        await backend.replace_documents(documents)

    asyncio.run(_load())
    return backend


# ------------------------------------------------------------------
# Service
# ------------------------------------------------------------------

@pytest.fixture
def indexed_service(settings: Settings, sample_files) -> CodeSearchService:
    """Service over an in-memory backend with the sample project indexed."""
    service = CodeSearchService(settings, backend=InMemoryBackend())
    asyncio.run(service.index_files(sample_files))
    return service

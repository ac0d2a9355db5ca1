"""Pytest configuration and fixtures for CodeGraph RAG tests."""

import shutil
import tempfile
from pathlib import Path
from typing import Dict, Generator, List, Optional, Sequence

import pytest

from codegraph_rag.errors import GenerationError
from codegraph_rag.graph_store import SQLiteGraphStore
from codegraph_rag.models import Turn
from codegraph_rag.projects import ProjectManager


# ---------------------------------------------------------------------------
# In-memory syntax trees
# ---------------------------------------------------------------------------

class FakeNode:
    """Minimal stand-in for a tree-sitter node."""

    def __init__(
        self,
        type: str,
        start_byte: int = 0,
        end_byte: int = 0,
        children: Sequence["FakeNode"] = (),
        fields: Optional[Dict[str, "FakeNode"]] = None,
        is_named: bool = True,
    ) -> None:
        self.type = type
        self.start_byte = start_byte
        self.end_byte = end_byte
        self.children = list(children)
        self.fields = fields or {}
        self.is_named = is_named

    @property
    def named_children(self) -> List["FakeNode"]:
        return [c for c in self.children if c.is_named]

    def child_by_field_name(self, name: str) -> Optional["FakeNode"]:
        return self.fields.get(name)


class FakeTree:
    def __init__(self, root_node: FakeNode) -> None:
        self.root_node = root_node


def span(source: str, text: str, start: int = 0) -> tuple:
    """UTF-8 byte span of the first *text* in *source* at or after *start*."""
    data = source.encode("utf-8")
    needle = text.encode("utf-8")
    begin = data.index(needle, start)
    return begin, begin + len(needle)


def named(source: str, node_type: str, text: str, name: str, children=(), start: int = 0) -> FakeNode:
    """A declaration node covering *text* whose ``name`` field is *name*."""
    begin, end = span(source, text, start)
    name_begin, name_end = span(source, name, begin)
    ident = FakeNode("identifier", name_begin, name_end)
    return FakeNode(node_type, begin, end, [ident, *children], fields={"name": ident})


@pytest.fixture
def fake_node():
    return FakeNode


@pytest.fixture
def fake_tree():
    return FakeTree


# ---------------------------------------------------------------------------
# Fake LLM
# ---------------------------------------------------------------------------

class FakeLLM:
    """Records calls; returns canned answers or raises on demand."""

    def __init__(self, answer: str = "1. The function adds two numbers.", fail: bool = False) -> None:
        self.answer = answer
        self.fail = fail
        self.calls: List[Dict[str, object]] = []

    def generate(self, system: str, history: Sequence[Turn], prompt: str) -> str:
        self.calls.append({"system": system, "history": tuple(history), "prompt": prompt})
        if self.fail:
            raise GenerationError("model unavailable")
        return self.answer


@pytest.fixture
def fake_llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture(autouse=True)
def _mock_local_llm():
    """Replace LocalLLM in the CLI so no test opens a network connection."""

    class _MockLocalLLM(FakeLLM):
        def __init__(self, **kwargs):
            super().__init__(answer="Mock answer for testing.")
            self.provider_name = kwargs.get("provider", "mock")
            self.model = kwargs.get("model", "mock-model")

    # Use a private MonkeyPatch so the shared ``monkeypatch`` fixture is not
    # set up before (and torn down after) fixtures such as ``temp_dir``.
    with pytest.MonkeyPatch.context() as mp:
        mp.setattr("codegraph_rag.cli.LocalLLM", _MockLocalLLM)
        yield


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------

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
def temp_home(temp_dir: Path, monkeypatch) -> Path:
    """Point every config path at a temporary home."""
    home = temp_dir / "home"
    monkeypatch.setattr("codegraph_rag.config.BASE_DIR", home)
    monkeypatch.setattr("codegraph_rag.config.MEMORY_DIR", home / "memory")
    monkeypatch.setattr("codegraph_rag.config.STATE_FILE", home / "state.json")
    monkeypatch.setattr("codegraph_rag.config.CONFIG_FILE", home / "config.toml")
    for var in ("CODEGRAPH_LLM_API_KEY", "NEO4J_URI", "NEO4J_USERNAME", "NEO4J_PASSWORD", "NEO4J_DATABASE"):
        monkeypatch.delenv(var, raising=False)
    return home


@pytest.fixture
def temp_project_manager(temp_home: Path) -> ProjectManager:
    """Create a ProjectManager with temporary storage."""
    return ProjectManager()


@pytest.fixture
def graph_store(temp_dir: Path) -> Generator[SQLiteGraphStore, None, None]:
    """A SQLite graph store in a temporary directory."""
    store = SQLiteGraphStore(temp_dir / "graph.db")
    yield store
    store.close()

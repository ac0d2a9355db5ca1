"""Typer-based CLI for CodeGraph RAG."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Tuple

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .answer import AnswerSynthesizer, ConversationSession
from .config_manager import Settings, load_settings
from .context import ContextAssembler
from .embeddings import get_embedder
from .errors import CodeGraphRAGError, GenerationError, RetrievalError, UpsertError
from .graph_store import GraphStore
from .graph_writer import GraphWriter
from .indexer import IngestionPipeline, VectorIndexWriter
from .llm import LocalLLM
from .models import EDGE_KINDS, NODE_LABELS
from .parser import TreeSitterParser
from .projects import ProjectManager, project_name_for
from .vector_store import VectorStore

logger = logging.getLogger(__name__)

app = typer.Typer(
    help="CodeGraph RAG: ask questions about a codebase using vectors plus a code graph.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

console = Console()

EXIT_WORDS = ("exit", "quit")


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        typer.echo(f"codegraph-rag v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log progress at INFO level."),
):
    """Index a codebase into a vector index and a code graph, then ask questions about it."""
    load_dotenv()
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _fail(message: str) -> None:
    console.print(f"[red]Error:[/red] {escape(message)}")
    raise typer.Exit(code=1)


def _resolve_project(pm: ProjectManager, project: Optional[str]) -> str:
    name = project or pm.get_current_project()
    if not name:
        _fail("No project selected. Run 'codegraph-rag ingest <path>' or pass --project.")
    if name not in pm.list_projects():
        _fail(f"Project '{name}' has not been ingested.")
    return name


def _open_stores(pm: ProjectManager, name: str, settings: Settings) -> Tuple[VectorStore, GraphStore]:
    try:
        return pm.open_vector_store(name), pm.open_graph_store(name, settings.graph)
    except Exception as exc:
        logger.debug("Opening stores failed", exc_info=True)
        _fail(f"Could not open stores for project '{name}': {exc}")
        raise


@app.command("ingest")
def ingest(
    root: Path = typer.Argument(..., help="Root folder of the codebase to index."),
    name: Optional[str] = typer.Option(None, "--name", "-n", help="Project name (default: folder name)."),
    reset: bool = typer.Option(False, "--reset", help="Clear the project's stores before indexing."),
):
    """Scan, chunk, embed and graph a codebase."""
    settings = load_settings()
    pm = ProjectManager()
    project = name or project_name_for(root)

    try:
        embedder = get_embedder(settings.embedding_model)
    except ValueError as exc:
        _fail(str(exc))
    vector_store, graph_store = _open_stores(pm, project, settings)

    try:
        if reset:
            vector_store.clear()
            graph_store.clear()
        pipeline = IngestionPipeline(
            parser=TreeSitterParser(),
            vector_writer=VectorIndexWriter(
                vector_store,
                embedder,
                batch_size=settings.index.batch_size,
                max_workers=settings.index.embed_workers,
            ),
            graph_writer=GraphWriter(graph_store),
        )
        with console.status(f"Indexing {escape(str(root))}..."):
            stats = pipeline.run(root)
    except UpsertError as exc:
        logger.error("Rejected batch sample: %s", exc.sample)
        _fail(str(exc))
    except CodeGraphRAGError as exc:
        _fail(str(exc))
    except Exception as exc:
        logger.exception("Ingestion failed")
        _fail(f"Ingestion failed: {exc}")
    finally:
        graph_store.close()

    pm.set_current_project(project)
    console.print(f"Indexed [bold]{escape(str(root))}[/bold] as project [bold]{escape(project)}[/bold].")
    console.print(
        f"Files: {stats.files} | Chunks: {stats.chunks} | Vectors: {stats.vectors} "
        f"(dropped {stats.dropped}) | Nodes: {stats.nodes} | Edges: {stats.edges}"
    )


def _answer_one(
    assembler: ContextAssembler,
    synthesizer: AnswerSynthesizer,
    session: ConversationSession,
    question: str,
) -> None:
    with console.status("Thinking..."):
        context = assembler.build_context(question)
        reply = synthesizer.answer(context, session)
    console.print()
    console.print(reply, markup=False, highlight=False)
    console.print()


@app.command("ask")
def ask(
    project: Optional[str] = typer.Option(None, "--project", "-p", help="Project to query (default: current)."),
    question: Optional[str] = typer.Option(None, "--question", "-q", help="Answer one question and exit."),
    top_k: Optional[int] = typer.Option(None, "--top-k", min=1, help="Chunks to retrieve per question."),
    hops: Optional[int] = typer.Option(None, "--hops", min=1, max=2, help="Graph expansion depth."),
):
    """Ask questions about an ingested codebase."""
    settings = load_settings()
    pm = ProjectManager()
    name = _resolve_project(pm, project)

    try:
        embedder = get_embedder(settings.embedding_model)
        llm = LocalLLM(
            provider=settings.llm.provider,
            model=settings.llm.model,
            api_key=settings.llm.api_key,
            endpoint=settings.llm.endpoint,
            timeout=settings.llm.timeout,
        )
    except ValueError as exc:
        _fail(str(exc))
    vector_store, graph_store = _open_stores(pm, name, settings)

    assembler = ContextAssembler(
        vector_store,
        graph_store,
        embedder,
        top_k=top_k or settings.index.top_k,
        hops=hops or settings.index.hops,
        neighbor_limit=settings.index.neighbor_limit,
    )
    synthesizer = AnswerSynthesizer(llm)
    session = ConversationSession()

    try:
        if question is not None:
            try:
                _answer_one(assembler, synthesizer, session, question)
            except (RetrievalError, GenerationError) as exc:
                _fail(f"Query failed: {exc}")
            return

        console.print(f"Asking about [bold]{escape(name)}[/bold]. Type 'exit' or 'quit' to leave.")
        while True:
            try:
                text = console.input("[bold blue]> [/bold blue]").strip()
            except EOFError:
                break
            if not text:
                continue
            if text.lower() in EXIT_WORDS:
                break
            try:
                _answer_one(assembler, synthesizer, session, text)
            except (RetrievalError, GenerationError) as exc:
                console.print(f"[red]Query failed:[/red] {escape(str(exc))}")
    finally:
        graph_store.close()


@app.command("status")
def status(
    project: Optional[str] = typer.Option(None, "--project", "-p", help="Project to inspect (default: current)."),
):
    """Show node, edge and vector counts for a project."""
    settings = load_settings()
    pm = ProjectManager()
    name = _resolve_project(pm, project)
    vector_store, graph_store = _open_stores(pm, name, settings)

    try:
        table = Table(title=f"Project '{escape(name)}'")
        table.add_column("Item")
        table.add_column("Count", justify="right")
        for label in NODE_LABELS:
            table.add_row(f"{label} nodes", str(graph_store.count_nodes(label)))
        for kind in EDGE_KINDS:
            table.add_row(f"{kind} edges", str(graph_store.count_edges(kind)))
        table.add_row("Vectors", str(vector_store.count()))
    finally:
        graph_store.close()
    console.print(table)


if __name__ == "__main__":
    app()

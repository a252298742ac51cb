"""
CLI for the medical document layer.

Commands:
    ingest     - Ingest a file (.txt, .md, .json, .pdf)
    search     - Search a user's documents
    documents  - List a user's documents
    info       - Show document info, chunks, and tables
    stats      - Show store statistics
    serve      - Run the HTTP API
"""

import asyncio
from pathlib import Path
from typing import Optional

import typer
from rich import print as rprint
from rich.console import Console
from rich.table import Table as RichTable

app = typer.Typer(
    name="medrag",
    help="MedRAG - medical document ingestion and hybrid retrieval",
)
console = Console()


def _open_store(data_dir: Optional[Path]):
    from ..config.settings import get_settings
    from ..store.local import LocalDocumentStore

    settings = get_settings()
    return LocalDocumentStore(data_dir or settings.data_dir)


def _setup_logging(verbose: bool) -> None:
    from ..config.settings import configure_logging

    configure_logging("DEBUG" if verbose else None)


@app.command()
def ingest(
    path: Path = typer.Argument(..., help="Path to a file or directory"),
    user: str = typer.Option(..., "--user", "-u", help="Owner of the document"),
    data_dir: Optional[Path] = typer.Option(None, "--data-dir", help="Store directory (default: RAG_DATA_DIR)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """
    Ingest documents for a user.

    Examples:
        # Ingest a lab report
        medrag ingest labs.pdf --user user_123

        # Ingest every supported file in a directory
        medrag ingest ./reports/ --user user_123
    """
    from ..config.settings import get_settings
    from ..embeddings import get_embedding_provider
    from ..errors import RagError
    from ..ingest import IngestionPipeline
    from ..sources import SUPPORTED_SUFFIXES, load_source
    from ..tracker import ProcessingTracker

    _setup_logging(verbose)
    settings = get_settings()

    if path.is_dir():
        files = sorted(p for p in path.iterdir() if p.suffix.lower() in SUPPORTED_SUFFIXES)
    elif path.exists():
        files = [path]
    else:
        rprint(f"[red]File not found: {path}[/red]")
        raise typer.Exit(1)

    if not files:
        rprint(f"[yellow]No supported files in {path}[/yellow]")
        return

    store = _open_store(data_dir)
    try:
        embedder = get_embedding_provider(settings)
    except ValueError as e:
        rprint(f"[red]{e}[/red]")
        raise typer.Exit(1)
    pipeline = IngestionPipeline.from_settings(store, embedder, ProcessingTracker(), settings)

    table = RichTable(title="Ingestion Results")
    table.add_column("Document ID", style="cyan")
    table.add_column("File")
    table.add_column("Chunks", justify="right")
    table.add_column("Tables", justify="right")
    table.add_column("Tokens", justify="right")
    table.add_column("Status")

    failures = 0
    for file_path in files:
        try:
            source = load_source(file_path, max_file_size=settings.max_file_size)
            result = asyncio.run(
                pipeline.ingest(
                    user_id=user,
                    filename=file_path.name,
                    source=source,
                    file_size=file_path.stat().st_size,
                )
            )
        except RagError as e:
            failures += 1
            rprint(f"[red]Failed to ingest {file_path.name}: {e.message}[/red]")
            continue

        table.add_row(
            result.document_id,
            file_path.name,
            str(result.chunks_count),
            str(result.tables_stored),
            str(result.tokens_used),
            "[yellow]duplicate[/yellow]" if result.duplicate else "[green]completed[/green]",
        )

    if table.row_count:
        console.print(table)
    if failures:
        raise typer.Exit(1)


@app.command()
def search(
    query: str = typer.Argument(..., help="Search query"),
    user: str = typer.Option(..., "--user", "-u", help="Search this user's documents"),
    mode: str = typer.Option("hybrid", "--mode", "-m", help="Mode: semantic, lexical, hybrid, structured"),
    max_results: Optional[int] = typer.Option(None, "--max-results", "-k", help="Number of results"),
    threshold: Optional[float] = typer.Option(None, "--threshold", "-t", help="Minimum semantic similarity"),
    category: Optional[str] = typer.Option(None, "--category", "-c", help="Table category (structured mode)"),
    data_dir: Optional[Path] = typer.Option(None, "--data-dir", help="Store directory (default: RAG_DATA_DIR)"),
    show_text: bool = typer.Option(True, "--show-text/--hide-text", help="Show result text"),
):
    """
    Search a user's documents.

    Examples:
        # Hybrid search (default)
        medrag search "glucose level" --user user_123

        # Lab tables only
        medrag search "hemoglobin" --user user_123 --mode structured --category lab_results
    """
    from ..config.settings import get_settings
    from ..embeddings import get_embedding_provider
    from ..errors import RagError
    from ..retrieval import RetrievalEngine, parse_mode
    from ..schemas.search import SearchOptions
    from ..schemas.table import TableCategory

    settings = get_settings()

    try:
        search_mode = parse_mode(mode)
    except RagError as e:
        rprint(f"[red]{e.message}[/red]")
        raise typer.Exit(1)

    category_enum = None
    if category:
        try:
            category_enum = TableCategory(category)
        except ValueError:
            valid = ", ".join(c.value for c in TableCategory)
            rprint(f"[red]Invalid category: {category}. Must be one of: {valid}[/red]")
            raise typer.Exit(1)

    options = SearchOptions(
        threshold=threshold if threshold is not None else settings.similarity_threshold,
        max_results=max_results or settings.max_search_results,
        category=category_enum,
    )

    engine = RetrievalEngine.from_settings(
        _open_store(data_dir),
        get_embedding_provider(settings),
        settings,
    )

    rprint(f"\nSearching: [cyan]{query}[/cyan]")
    rprint(f"   Mode: {search_mode.value}, User: {user}")

    try:
        response = asyncio.run(engine.search_detailed(query, user, search_mode, options))
    except RagError as e:
        rprint(f"[red]{e.message}[/red]")
        raise typer.Exit(1)

    if not response.results:
        rprint("[yellow]No results found[/yellow]")
        return

    rprint(f"\n[green]Found {len(response.results)} results:[/green]\n")

    for i, result in enumerate(response.results, 1):
        pages = ", ".join(str(p) for p in result.pages) or "-"
        kind = result.category.value if result.category else ("table" if result.is_table else "text")
        rprint(
            f"[bold]{i}.[/bold] Score: {result.combined_score:.4f} | "
            f"{result.filename or result.document_id} | Pages: {pages} | Type: {kind}"
        )
        if result.cross_source:
            rprint("   [magenta]matched by semantic and lexical search[/magenta]")

        if show_text:
            text = result.text[:500]
            if len(result.text) > 500:
                text += "..."
            rprint(f"   [dim]{text}[/dim]")

        rprint()


@app.command()
def documents(
    user: str = typer.Option(..., "--user", "-u", help="Owner of the documents"),
    data_dir: Optional[Path] = typer.Option(None, "--data-dir", help="Store directory (default: RAG_DATA_DIR)"),
):
    """
    List a user's documents.
    """
    store = _open_store(data_dir)
    records = asyncio.run(store.list_documents(user))

    if not records:
        rprint("[yellow]No documents found[/yellow]")
        return

    table = RichTable(title=f"Documents for {user}")
    table.add_column("Document ID", style="cyan")
    table.add_column("File")
    table.add_column("Status")
    table.add_column("Chunks", justify="right")
    table.add_column("Uploaded")

    for record in records:
        table.add_row(
            record.document_id,
            record.filename,
            record.status.value,
            str(record.chunks_count),
            record.uploaded_at.strftime("%Y-%m-%d %H:%M"),
        )

    console.print(table)


@app.command()
def info(
    document_id: str = typer.Argument(..., help="Document ID"),
    data_dir: Optional[Path] = typer.Option(None, "--data-dir", help="Store directory (default: RAG_DATA_DIR)"),
):
    """
    Show document info, chunks, and tables.
    """
    store = _open_store(data_dir)
    record = asyncio.run(store.get_document(document_id))

    if record is None:
        rprint(f"[red]Document not found: {document_id}[/red]")
        raise typer.Exit(1)

    chunks = asyncio.run(store.get_chunks(document_id))
    tables = asyncio.run(store.get_tables(document_id))

    rprint(f"\n[bold]Document: {document_id}[/bold]")
    rprint(f"  File: {record.filename} ({record.file_type})")
    rprint(f"  Owner: {record.user_id}")
    rprint(f"  Status: {record.status.value}")
    rprint(f"  Size: {record.file_size:,} bytes, {record.text_length:,} characters")
    if record.metadata.get("page_count"):
        rprint(f"  Pages: {record.metadata['page_count']}")
    rprint(f"  Uploaded: {record.uploaded_at}")
    if record.processed_at:
        rprint(f"  Processed: {record.processed_at}")
    if record.metadata.get("error"):
        rprint(f"  [red]Error: {record.metadata['error']}[/red]")

    rprint(f"\n[bold]Chunks:[/bold] {len(chunks)}")
    for chunk in chunks[:10]:
        pages = ", ".join(str(p) for p in chunk.pages) or "-"
        marker = " [yellow]table[/yellow]" if chunk.is_table else ""
        rprint(f"  {chunk.chunk_index}: {chunk.char_count} chars, pages {pages}{marker}")
    if len(chunks) > 10:
        rprint(f"  [dim]... {len(chunks) - 10} more[/dim]")

    if tables:
        rprint(f"\n[bold]Tables:[/bold] {len(tables)}")
        for table in tables:
            rprint(
                f"  {table.table_id}: {table.category.value}, "
                f"{table.row_count}x{table.col_count}, page {table.page_number or '-'}"
            )
            if table.entities:
                rprint(f"     Entities: {', '.join(table.entities)}")


@app.command()
def stats(
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Limit to one user"),
    data_dir: Optional[Path] = typer.Option(None, "--data-dir", help="Store directory (default: RAG_DATA_DIR)"),
):
    """
    Show store statistics.
    """
    store = _open_store(data_dir)
    result = asyncio.run(store.stats(user))

    table = RichTable(title="Store Statistics" + (f" for {user}" if user else ""))
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")

    for key, value in result.items():
        if isinstance(value, dict):
            value = ", ".join(f"{k}={v}" for k, v in value.items())
        table.add_row(key.replace("_", " "), str(value if value is not None else "-"))

    console.print(table)


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", "--host", help="Bind address"),
    port: int = typer.Option(8000, "--port", "-p", help="Port"),
    reload: bool = typer.Option(False, "--reload", help="Auto-reload on code changes"),
):
    """
    Run the HTTP API with uvicorn.
    """
    import uvicorn

    uvicorn.run(
        "medrag.api.main:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
    )


if __name__ == "__main__":
    app()

# ragflow/interface/cli.py

from typing import List

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from ragflow.application.ingestion_service import SyncReport
from ragflow.domain.models import Citation, Provenance


console = Console()

_PROVENANCE_LABELS = {
    Provenance.KNOWLEDGE_BASE: ("📚 Knowledge base", "green"),
    Provenance.WEB_SEARCH: ("🌐 Web search", "yellow"),
    Provenance.LLM_KNOWLEDGE: ("🧠 Model knowledge", "magenta"),
}


def display_welcome_banner() -> None:
    console.print(Panel.fit(
        "[bold cyan]🔍 RagFlow Question Answering[/bold cyan]\n"
        "[dim]Knowledge base → web search → model knowledge[/dim]",
        box=box.DOUBLE,
        border_style="cyan",
    ))


def display_sync_report(collection: str, report: SyncReport, fragment_count: int) -> None:
    console.print(
        f"\n[green]✓[/green] Collection [bold]{collection}[/bold] synced: "
        f"{len(report.indexed)} indexed, {len(report.unchanged)} unchanged, "
        f"{len(report.deleted)} removed, [bold]{fragment_count}[/bold] fragments ready."
    )
    for name in report.failed:
        console.print(f"  [red]✗[/red] failed to index {name}")


def prompt_for_question() -> str:
    return Prompt.ask("\n[bold yellow]❓ Your question[/bold yellow]")


def display_provenance(provenance: Provenance) -> None:
    label, color = _PROVENANCE_LABELS[provenance]
    console.print(f"\n[bold {color}]{label}[/bold {color}]\n")


def display_token(token: str) -> None:
    console.print(token, end="", markup=False, highlight=False, soft_wrap=True)


def end_answer() -> None:
    console.print()


def display_citations(citations: List[Citation]) -> None:
    if not citations:
        return

    table = Table(title="Sources", box=box.ROUNDED, show_lines=False)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Source", style="bold white")
    table.add_column("Score", justify="right")
    table.add_column("Snippet", overflow="fold")

    for rank, citation in enumerate(citations, start=1):
        color = _score_to_color(citation.score)
        table.add_row(
            str(rank),
            citation.document_name,
            f"[{color}]{citation.score:.4f}[/{color}]",
            citation.snippet.replace("\n", " "),
        )
    console.print(table)


def display_error(message: str) -> None:
    console.print(f"\n[bold red]✗ Error:[/bold red] {message}\n")


def ask_continue() -> bool:
    answer = Prompt.ask(
        "\n[dim]Ask another question?[/dim]",
        choices=["y", "n"],
        default="y",
    )
    return answer.lower() == "y"


def _score_to_color(score: float) -> str:
    if score >= 0.75:
        return "green"
    elif score >= 0.50:
        return "yellow"
    else:
        return "red"

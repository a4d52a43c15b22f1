# main.py

import asyncio
import sys

from ragflow.application.orchestrator import FallbackOrchestrator
from ragflow.config import Settings
from ragflow.container import build_services
from ragflow.domain.errors import ConfigError
from ragflow.domain.models import StreamEventType
from ragflow.interface.cli import (
    ask_continue,
    display_citations,
    display_error,
    display_provenance,
    display_sync_report,
    display_token,
    display_welcome_banner,
    end_answer,
    prompt_for_question,
)
from ragflow.logger import configure_logging


DATA_DIRECTORY = "data"


def main() -> None:
    configure_logging()
    display_welcome_banner()

    # ── 1. Initialize infrastructure ─────────────────────────────────────────
    try:
        settings = Settings.from_env()
        services = build_services(settings)
    except ConfigError as error:
        display_error(str(error))
        sys.exit(1)

    collection = settings.retrieval.default_collection

    # ── 2. Incremental indexing ──────────────────────────────────────────────
    try:
        report = services.ingestion.sync_directory(collection, DATA_DIRECTORY)
    except FileNotFoundError as error:
        display_error(str(error))
        sys.exit(1)

    display_sync_report(collection, report, services.vector_index.count(collection))

    # ── 3. Interactive question loop ─────────────────────────────────────────
    while True:
        question = prompt_for_question()
        try:
            asyncio.run(_answer(services.orchestrator, question))
        except ValueError as error:
            display_error(str(error))

        if not ask_continue():
            break


async def _answer(orchestrator: FallbackOrchestrator, question: str) -> None:
    """Stream one answer to the console: provenance, tokens, then sources."""
    citations = []
    async for event in orchestrator.stream(question):
        if event.event is StreamEventType.SOURCE:
            citations = event.data["citations"]
            display_provenance(event.data["provenance"])
        elif event.event is StreamEventType.MESSAGE:
            display_token(event.data)
        elif event.event is StreamEventType.ERROR:
            end_answer()
            display_error(event.data)
            return

    end_answer()
    display_citations(citations)


if __name__ == "__main__":
    main()

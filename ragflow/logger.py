import logging
from rich.console import Console
from rich.logging import RichHandler

console = Console(stderr=True)

_NOISY_LOGGERS = (
    "httpx",
    "httpcore",
    "urllib3",
    "openai",
    "sentence_transformers",
    "uvicorn.access",
)


def configure_logging(level: int = logging.INFO) -> None:
    """Route every logger through rich. Called once by the entry points."""
    logging.basicConfig(
        level=level,
        format="%(message)s",  # Rich handles formatting
        datefmt="[%H:%M:%S]",
        handlers=[
            RichHandler(
                console=console,
                rich_tracebacks=True,
                tracebacks_show_locals=False,
                show_time=True,
                show_level=True,
                show_path=False,
            )
        ],
        force=True,
    )

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)

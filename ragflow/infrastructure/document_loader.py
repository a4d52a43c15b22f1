# ragflow/infrastructure/document_loader.py

import re
from pathlib import Path
from typing import List

from ragflow.logger import get_logger

logger = get_logger(__name__)


SUPPORTED_EXTENSIONS = {".txt", ".md"}


class DocumentLoader:
    """
    Reads plain-text documents for indexing.

    Only .txt and .md are supported; richer formats need a text extractor
    in front of this loader.
    """

    def list_files(self, directory_path: Path) -> List[Path]:
        data_dir = Path(directory_path)
        if not data_dir.exists():
            raise FileNotFoundError(f"Data directory not found: {directory_path}")

        return [
            file_path
            for file_path in sorted(data_dir.rglob("*"))
            if file_path.is_file() and self.is_supported(file_path)
        ]

    @staticmethod
    def is_supported(file_path: Path) -> bool:
        return Path(file_path).suffix.lower() in SUPPORTED_EXTENSIONS

    def load_text(self, file_path: Path) -> str:
        file_path = Path(file_path)
        if not self.is_supported(file_path):
            raise ValueError(f"File type not supported for indexing: {file_path.name}")
        if not file_path.is_file():
            raise FileNotFoundError(f"Document not found on disk: {file_path}")

        text = file_path.read_text(encoding="utf-8", errors="replace")
        return self._clean_text(text)

    @staticmethod
    def _clean_text(text: str) -> str:
        """Normalize line endings and collapse long runs of blank lines."""
        text = text.replace("\r\n", "\n").replace("\r", "\n")
        text = re.sub(r"\n{3,}", "\n\n", text)
        return text.strip()

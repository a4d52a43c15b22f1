import hashlib
from pathlib import Path


def compute_file_hash(file_path: Path) -> str:
    """
    SHA-256 of a file's contents.
    Used to detect whether a source document changed since it was last indexed.
    """
    sha256 = hashlib.sha256()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            sha256.update(chunk)
    return sha256.hexdigest()

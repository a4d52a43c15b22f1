# ragflow/domain/errors.py


class RagFlowError(Exception):
    """Base class for every error raised by the retrieval engine."""


class ConfigError(RagFlowError):
    """Invalid configuration. Fatal at startup."""


class EmbeddingError(RagFlowError):
    """The embedding collaborator failed. Recoverable: drives the fallback."""


class SearchError(RagFlowError):
    """A vector search failed. Recoverable: drives the fallback."""


class GenerationError(RagFlowError):
    """The generation collaborator failed. Surfaced to the caller."""


class PersistenceError(RagFlowError):
    """Saving or loading the index failed. Logged, never blocks startup."""


class DocumentNotFoundError(RagFlowError):
    def __init__(self, document_id: int):
        super().__init__(f"Document not found: {document_id}")
        self.document_id = document_id

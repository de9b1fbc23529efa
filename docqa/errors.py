"""Error taxonomy for the document Q&A pipeline."""
from typing import Optional


class DocQAError(Exception):
    """Base class for every error raised by docqa."""


class InvalidConfiguration(DocQAError, ValueError):
    """Bad parameters, e.g. a chunk overlap that does not advance the window."""


class InvalidVector(DocQAError, ValueError):
    """Vector operands that cannot be compared (zero norm, dimension mismatch)."""


class UnsupportedMediaType(DocQAError):
    """No text extractor is available for the uploaded media type."""


class InvalidTransition(DocQAError):
    """A document lifecycle transition that the state machine does not allow."""


class MessageStreamActive(DocQAError):
    """A message was appended while the previous assistant message is still streaming."""


class MessageImmutable(DocQAError):
    """A fragment was appended to a message that is no longer streaming."""


class BackendError(DocQAError):
    """An error reported by a network-bound collaborator.

    Attributes:
        status_code: HTTP status reported by the backend, if any
        detail: Response body or backend message, if any
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        detail: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail

    def __str__(self) -> str:
        message = super().__str__()
        if self.status_code is not None:
            message = f"{message} (status {self.status_code})"
        if self.detail:
            message = f"{message}: {self.detail}"
        return message


class EmbeddingUnavailable(BackendError):
    """The embedding service cannot be reached or the model cannot be loaded."""


class EmbeddingFailed(BackendError):
    """An embedding call completed with an error for a specific input."""


class StoreWriteFailed(BackendError):
    """A vector or document store mutation failed."""


class StoreReadFailed(BackendError):
    """A vector or document store read failed or returned malformed data."""


class SynthesisFailed(BackendError):
    """The language-model backend errored or produced a malformed stream."""

"""Typed errors for the knowledge pipeline.

Only configuration and persistence faults are meant to escape the service
layer; everything else degrades into a status, a score or a fallback value.
"""

from dataclasses import dataclass, field


@dataclass
class KnowledgeBaseError(Exception):
    """Base error for the travel knowledge base.

    Attributes:
        message: Human-readable error description
        cause: Optional underlying exception
    """

    message: str
    cause: Exception | None = field(default=None, repr=False)

    def __str__(self) -> str:
        if self.cause:
            return f"{self.message}: {self.cause}"
        return self.message

    def __post_init__(self) -> None:
        super().__init__(self.message)


@dataclass
class ConfigurationError(KnowledgeBaseError):
    """Invalid or missing configuration."""

    setting_name: str = ""


@dataclass
class EmbeddingError(KnowledgeBaseError):
    """The embedding provider failed or returned an unusable vector."""

    model: str = ""


@dataclass
class PersistenceError(KnowledgeBaseError):
    """The durable store rejected a write or read."""

    operation: str = ""


@dataclass
class RecordNotFoundError(KnowledgeBaseError):
    """No content record exists for the given id."""

    record_id: str = ""


@dataclass
class DestinationNotFoundError(KnowledgeBaseError):
    """No destination record exists for the given id."""

    destination_id: str = ""

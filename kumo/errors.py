"""
kumo.errors — Typed error model for the reconciliation engine.

All errors are explicitly typed and include:
- message: human-readable description
- code: machine-readable error code
- entity: affected entity label (slug, SKU or reference key)
- stage: pipeline stage where the error occurred
- suggestions: remediation hints for the operator
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, TypeVar

from kumo.logger import get_logger

T = TypeVar("T")


@dataclass(eq=False)
class KumoError(Exception):
    """Base error for all kumo errors."""
    message: str
    code: str = "KUMO_ERROR"
    entity: str = ""
    stage: str = ""
    suggestions: tuple[str, ...] = ()
    payload: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "entity": self.entity,
            "stage": self.stage,
            "suggestions": list(self.suggestions),
            "payload": self.payload,
        }


@dataclass(eq=False)
class ValidationError(KumoError):
    """Catalog input could not be parsed."""
    code: str = "VALIDATION_ERROR"


@dataclass(eq=False)
class EntityNotFoundError(KumoError):
    """A named reference could not be resolved to a remote ID."""
    code: str = "ENTITY_NOT_FOUND"
    kind: str = ""
    key: str = ""


@dataclass(eq=False)
class OperationError(KumoError):
    """A repository call failed; wraps the cause with business context."""
    code: str = "OPERATION_ERROR"
    operation: str = ""


@dataclass(eq=False)
class EntityOperationError(OperationError):
    code: str = "ENTITY_ERROR"


@dataclass(eq=False)
class VariantOperationError(OperationError):
    code: str = "VARIANT_ERROR"


@dataclass(eq=False)
class MediaOperationError(OperationError):
    code: str = "MEDIA_ERROR"


@dataclass(eq=False)
class ChannelListingError(OperationError):
    code: str = "CHANNEL_LISTING_ERROR"


@dataclass(eq=False)
class TransportError(KumoError):
    """Network or HTTP transport error."""
    code: str = "TRANSPORT_ERROR"
    http_status: int | None = None
    retryable: bool = True
    retry_after: float | None = None


@dataclass(eq=False)
class AuthError(TransportError):
    """Authentication or authorization failed."""
    code: str = "AUTH_ERROR"
    retryable: bool = False


@dataclass(eq=False)
class GraphQLError(KumoError):
    """The remote service answered with errors."""
    code: str = "GRAPHQL_ERROR"
    errors: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_errors(cls, message: str, errors: list[dict[str, Any]]) -> "GraphQLError":
        details = "; ".join(
            f"{e['field']}: {e.get('message')}" if e.get("field") else str(e.get("message"))
            for e in errors
        )
        full = f"{message}: {details}" if details else message
        return cls(message=full, errors=list(errors))


class BatchError(KumoError):
    """One or more entities in a batch failed."""

    def __init__(self, failures: list, total: int):
        lines = [f"{len(failures)} of {total} entities failed:"]
        lines.extend(f"  - {f.entity_label}: {f.error}" for f in failures)
        super().__init__(
            message="\n".join(lines),
            code="BATCH_ERROR",
            stage="batch",
            payload={
                "total": total,
                "failed": len(failures),
                "failures": [
                    {"entity": f.entity_label, "message": str(f.error)} for f in failures
                ],
            },
        )
        self.failures = failures
        self.total = total


async def wrap_operation(
    operation: str,
    kind: str,
    identifier: str | None,
    fn: Callable[[], Awaitable[T]],
    error_class: type[OperationError] = OperationError,
) -> T:
    """
    Await a repository call, adding business context to any failure.

    Errors already of ``error_class`` pass through untouched; anything else
    is re-raised as ``error_class`` with the operation, entity kind and
    identifier in the message.
    """
    logger = get_logger()
    context = f"{kind} '{identifier}'" if identifier else kind

    try:
        logger.debug(f"Starting {operation}", entity=identifier, stage=operation, kind=kind)
        result = await fn()
        logger.debug(f"Completed {operation}", entity=identifier, stage=operation, kind=kind)
        return result
    except error_class:
        raise
    except Exception as e:
        logger.error(
            f"Failed {operation}",
            entity=identifier,
            stage=operation,
            kind=kind,
            error=str(e),
        )
        suggestions = e.suggestions if isinstance(e, KumoError) else ()
        raise error_class(
            message=f"Failed to {operation} for {context}: {e}",
            entity=identifier or "",
            stage=operation,
            suggestions=suggestions,
            operation=operation,
        ) from e

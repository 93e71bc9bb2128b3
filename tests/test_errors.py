"""Tests for kumo.errors."""

import asyncio

import pytest

from kumo.errors import (
    AuthError,
    BatchError,
    ChannelListingError,
    EntityNotFoundError,
    EntityOperationError,
    GraphQLError,
    KumoError,
    MediaOperationError,
    OperationError,
    TransportError,
    ValidationError,
    wrap_operation,
)
from kumo.models import BatchFailure


class TestKumoError:
    def test_str_representation(self):
        error = KumoError(message="Test error message", entity="shoe", stage="parse")
        assert str(error) == "Test error message"

    def test_to_dict(self):
        error = KumoError(
            message="Test error",
            entity="shoe",
            stage="upsert",
            suggestions=("Try again",),
            payload={"field": "value"},
        )
        d = error.to_dict()

        assert d["type"] == "KumoError"
        assert d["code"] == "KUMO_ERROR"
        assert d["entity"] == "shoe"
        assert d["stage"] == "upsert"
        assert d["suggestions"] == ["Try again"]
        assert d["payload"] == {"field": "value"}

    def test_supports_traceback(self):
        with pytest.raises(KumoError) as exc_info:
            raise KumoError(message="boom")
        assert exc_info.value.__traceback__ is not None


class TestTypedErrors:
    def test_validation_error(self):
        error = ValidationError(message="Entity is missing a name")
        assert error.code == "VALIDATION_ERROR"

    def test_entity_not_found(self):
        error = EntityNotFoundError(
            message="Category 'Boots' not found", kind="category", key="Boots"
        )
        assert error.code == "ENTITY_NOT_FOUND"
        assert error.kind == "category"
        assert error.key == "Boots"

    def test_operation_error_codes(self):
        assert EntityOperationError(message="x").code == "ENTITY_ERROR"
        assert MediaOperationError(message="x").code == "MEDIA_ERROR"
        assert ChannelListingError(message="x").code == "CHANNEL_LISTING_ERROR"

    def test_transport_error_retryable_by_default(self):
        assert TransportError(message="timeout").retryable is True

    def test_auth_error_not_retryable(self):
        error = AuthError(message="Authentication failed", http_status=401)
        assert error.retryable is False
        assert error.code == "AUTH_ERROR"
        assert isinstance(error, TransportError)


class TestGraphQLError:
    def test_from_errors_with_fields(self):
        error = GraphQLError.from_errors(
            "productCreate failed",
            [
                {"field": "slug", "message": "already exists"},
                {"message": "something else"},
            ],
        )
        assert str(error) == "productCreate failed: slug: already exists; something else"
        assert len(error.errors) == 2

    def test_from_no_errors(self):
        assert str(GraphQLError.from_errors("failed", [])) == "failed"


class TestBatchError:
    def test_message_lists_every_failure(self):
        failures = [
            BatchFailure("shoe", EntityNotFoundError(message="Category 'Boots' not found")),
            BatchFailure("shirt", GraphQLError(message="Rejected")),
        ]
        error = BatchError(failures, total=5)

        message = str(error)
        assert message.startswith("2 of 5 entities failed:")
        assert "  - shoe: Category 'Boots' not found" in message
        assert "  - shirt: Rejected" in message
        assert error.failures == failures
        assert error.total == 5
        assert error.payload["failed"] == 2


class TestWrapOperation:
    def test_returns_result(self):
        async def fn():
            return 42

        result = asyncio.run(wrap_operation("create entity", "entity", "shoe", fn))
        assert result == 42

    def test_adds_context(self):
        async def fn():
            raise RuntimeError("connection reset")

        with pytest.raises(EntityOperationError) as exc_info:
            asyncio.run(wrap_operation(
                "create entity", "entity", "shoe", fn, EntityOperationError
            ))

        error = exc_info.value
        assert str(error) == "Failed to create entity for entity 'shoe': connection reset"
        assert error.operation == "create entity"
        assert error.entity == "shoe"
        assert isinstance(error.__cause__, RuntimeError)

    def test_keeps_suggestions_of_cause(self):
        async def fn():
            raise EntityNotFoundError(message="Type 'X' not found", suggestions=("Create it",))

        with pytest.raises(OperationError) as exc_info:
            asyncio.run(wrap_operation("resolve type", "type", "X", fn))

        assert exc_info.value.suggestions == ("Create it",)

    def test_same_class_passes_through(self):
        original = MediaOperationError(message="already wrapped")

        async def fn():
            raise original

        with pytest.raises(MediaOperationError) as exc_info:
            asyncio.run(wrap_operation("list media", "entity", "shoe", fn, MediaOperationError))

        assert exc_info.value is original

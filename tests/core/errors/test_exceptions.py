"""
Tests for the exception hierarchy and classification helpers.

Test Coverage:
    - Category of every domain error
    - Retryability by category
    - Request error codes and overrides
    - classify_exception for foreign exceptions
    - wrap_engine_exception, including the empty-response case
"""

import json

import pytest
from pydantic import BaseModel, ValidationError

from core.errors import (
    AnalysisEngineEmptyResponseError,
    AnalysisEngineError,
    AuthError,
    EmptyDatasetError,
    ErrorCategory,
    InvalidRequestError,
    InvalidTaskError,
    MissingRequiredColumnsError,
    PermanentError,
    PipelineError,
    StorageError,
    TaskNotFoundError,
    TransportError,
    UnsupportedFormatError,
    classify_exception,
    is_empty_response_error,
    wrap_engine_exception,
)


class _Model(BaseModel):
    count: int


def _validation_error() -> ValidationError:
    try:
        _Model(count="many")
    except ValidationError as e:
        return e
    raise AssertionError("expected ValidationError")


class TestCategories:
    @pytest.mark.parametrize(
        "error, category",
        [
            (InvalidRequestError("x"), ErrorCategory.PERMANENT),
            (UnsupportedFormatError("x"), ErrorCategory.PERMANENT),
            (MissingRequiredColumnsError("x", ["id"]), ErrorCategory.PERMANENT),
            (EmptyDatasetError("x"), ErrorCategory.PERMANENT),
            (TaskNotFoundError("t1"), ErrorCategory.PERMANENT),
            (InvalidTaskError("x"), ErrorCategory.PERMANENT),
            (AnalysisEngineError("x"), ErrorCategory.TRANSIENT),
            (AnalysisEngineEmptyResponseError("x"), ErrorCategory.TRANSIENT),
            (StorageError("x"), ErrorCategory.TRANSIENT),
            (TransportError("x"), ErrorCategory.TRANSIENT),
            (AuthError("x"), ErrorCategory.AUTH),
            (PipelineError("x"), ErrorCategory.UNKNOWN),
        ],
    )
    def test_category(self, error, category):
        assert error.category == category

    def test_retryable(self):
        assert AnalysisEngineError("x").is_retryable
        assert AuthError("x").is_retryable
        assert PipelineError("x").is_retryable
        assert not InvalidTaskError("x").is_retryable


class TestPipelineError:
    def test_str_includes_cause(self):
        error = StorageError("write failed", cause=OSError("disk full"))
        assert str(error) == "write failed | Caused by: disk full"

    def test_context_defaults_to_empty(self):
        assert PipelineError("x").context == {}


class TestRequestErrorCodes:
    def test_default_codes(self):
        assert InvalidRequestError("x").code == "Invalid Request"
        assert UnsupportedFormatError("x").code == "Unsupported File Type"
        assert EmptyDatasetError("x").code == "No Valid Comments"

    def test_code_override(self):
        error = InvalidRequestError("File upload is required", code="Missing File")
        assert error.code == "Missing File"
        assert InvalidRequestError.code == "Invalid Request"

    def test_missing_columns_carried(self):
        error = MissingRequiredColumnsError("missing", ["comment-id", "comment_text"])
        assert error.missing_columns == ["comment-id", "comment_text"]
        assert error.context == {"missing_columns": ["comment-id", "comment_text"]}

    def test_task_not_found(self):
        error = TaskNotFoundError("task_1")
        assert error.task_id == "task_1"
        assert "task_1" in error.message


class TestClassifyException:
    def test_pipeline_error_keeps_category(self):
        assert classify_exception(InvalidTaskError("x")) == ErrorCategory.PERMANENT

    def test_malformed_payloads_are_permanent(self):
        assert classify_exception(_validation_error()) == ErrorCategory.PERMANENT
        with pytest.raises(json.JSONDecodeError) as exc_info:
            json.loads("{bad")
        assert classify_exception(exc_info.value) == ErrorCategory.PERMANENT

    @pytest.mark.parametrize(
        "error, category",
        [
            (TimeoutError("slow"), ErrorCategory.TRANSIENT),
            (ConnectionError("reset"), ErrorCategory.TRANSIENT),
            (RuntimeError("HTTP 429 Too Many Requests"), ErrorCategory.TRANSIENT),
            (RuntimeError("Service Unavailable"), ErrorCategory.TRANSIENT),
            (RuntimeError("401 Unauthorized"), ErrorCategory.AUTH),
            (RuntimeError("Invalid API key provided"), ErrorCategory.AUTH),
            (RuntimeError("something odd"), ErrorCategory.UNKNOWN),
        ],
    )
    def test_foreign_exceptions(self, error, category):
        assert classify_exception(error) == category


class TestWrapEngineException:
    def test_pipeline_errors_pass_through(self):
        error = InvalidTaskError("x")
        assert wrap_engine_exception(error) is error

    def test_empty_response_detected_by_message(self):
        cause = RuntimeError("Model returned an EMPTY RESPONSE")

        wrapped = wrap_engine_exception(cause)

        assert isinstance(wrapped, AnalysisEngineEmptyResponseError)
        assert wrapped.suggestion == "retry_later"
        assert wrapped.cause is cause
        assert is_empty_response_error(cause)

    def test_auth_failure(self):
        assert isinstance(wrap_engine_exception(RuntimeError("401 Unauthorized")), AuthError)

    def test_permanent_failure(self):
        assert isinstance(wrap_engine_exception(_validation_error()), PermanentError)

    def test_generic_failure(self):
        wrapped = wrap_engine_exception(ValueError("bad topics"))

        assert type(wrapped) is AnalysisEngineError
        assert wrapped.message == "bad topics"

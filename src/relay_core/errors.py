from __future__ import annotations


class TypedRelayError(RuntimeError):
    """Base class for typed operational errors surfaced to users."""

    error_code = "INTERNAL_ERROR"
    failure_class = "internal"
    user_message = "An internal error occurred."

    def metadata(self) -> dict[str, str]:
        return {
            "error_code": self.error_code,
            "failure_class": self.failure_class,
            "user_message": self.user_message,
        }

    def payload(self, *, detail: str | None = None) -> dict[str, str]:
        payload = self.metadata()
        payload["detail"] = str(self) if detail is None else str(detail)
        return payload


def typed_error_metadata(exc: BaseException) -> dict[str, str] | None:
    if isinstance(exc, TypedRelayError):
        return exc.metadata()
    return None


def typed_error_payload(exc: BaseException) -> dict[str, str] | None:
    if isinstance(exc, TypedRelayError):
        return exc.payload()
    return None


class ConfigError(TypedRelayError):
    """Configuration parsing or validation error."""

    error_code = "CONFIG_ERROR"
    failure_class = "configuration"
    user_message = "Configuration is invalid."


class InvalidInputError(TypedRelayError):
    """Blank identifiers or content, or oversized text."""

    error_code = "INVALID_INPUT"
    failure_class = "validation"
    user_message = "The request contained invalid input."


class NotFoundError(TypedRelayError):
    """Referenced conversation does not exist."""

    error_code = "NOT_FOUND"
    failure_class = "not_found"
    user_message = "Conversation not found."


class ProcessFailureError(TypedRelayError):
    """Assistant process exited non-zero or produced unusable output."""

    error_code = "PROCESS_FAILURE"
    failure_class = "assistant_process"
    user_message = "The assistant process failed."


class TurnTimeoutError(TypedRelayError):
    """Assistant process exceeded its execution bound and was killed."""

    error_code = "TIMEOUT"
    failure_class = "timeout"
    user_message = "The assistant did not answer in time."

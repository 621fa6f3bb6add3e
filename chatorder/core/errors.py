from __future__ import annotations


class ChatOrderError(Exception):
    """Base class for failures raised by the ordering engine."""


class TransientInfraError(ChatOrderError):
    """Store or network blip; safe to retry."""


class FieldValidationError(ChatOrderError):
    def __init__(self, field_id: str, message: str) -> None:
        super().__init__(message)
        self.field_id = field_id
        self.message = message


class ConfigurationError(ChatOrderError):
    """Tenant is missing setup required by the current step."""


class ExternalProviderError(ChatOrderError):
    def __init__(self, message: str, *, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


class QuoteError(ExternalProviderError):
    pass


class DeliveryOrderError(ExternalProviderError):
    pass


class SubmissionError(ExternalProviderError):
    pass


class VersionConflict(ChatOrderError):
    def __init__(self, tenant_id: str, sender_id: str, expected_version: int) -> None:
        super().__init__(
            f"session version conflict tenant={tenant_id} sender={sender_id} expected={expected_version}"
        )
        self.tenant_id = tenant_id
        self.sender_id = sender_id
        self.expected_version = expected_version


class InvalidSelection(ChatOrderError):
    """A cart selection referenced an option the catalog does not offer."""

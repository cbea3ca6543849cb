from fastapi import status


class GatewayError(Exception):
    """Base class for every failure the gateway reports back to a caller."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    # Set once the failure has its audit record
    audited = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def error_type(self) -> str:
        return type(self).__name__

    def to_payload(self) -> dict:
        return {"error": self.message, "error_type": self.error_type}


class ValidationError(GatewayError):
    """The statement is not a SELECT or contains a banned token."""

    status_code = status.HTTP_400_BAD_REQUEST


class BindingError(GatewayError):
    """A parameter value cannot be classified or bound."""

    status_code = status.HTTP_400_BAD_REQUEST


class ResolutionError(GatewayError):
    """A malformed allow-list entry. Skipped, never a request failure."""

    status_code = status.HTTP_400_BAD_REQUEST


class ExecutionError(GatewayError):
    """The database call failed. The driver message is kept as-is."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

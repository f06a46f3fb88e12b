"""
Error taxonomy shared by the backend services and the client library.

ValidationError and StateConflictError are surfaced to the user as-is.
TransportError is raised by the client for network failures. StaleViewError
never reaches the user: it tells a live view to refetch.
"""


class ClinicError(Exception):
    pass


class ValidationError(ClinicError):
    """Bad input shape or range."""


class InvalidQuantity(ValidationError):
    pass


class MissingReason(ValidationError):
    pass


class QuantityExceeded(ValidationError):
    pass


class InvalidStatus(ValidationError):
    pass


class StateConflictError(ClinicError):
    """Operation not valid for the entity's current state."""


class InvalidState(StateConflictError):
    pass


class NotFoundError(ClinicError):
    pass


class TransportError(ClinicError):
    pass


class StaleViewError(ClinicError):
    pass

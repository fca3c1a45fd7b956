"""
Lifecycle Errors

Every engine-level failure is terminal for the request that triggered it.
The engines never retry; the REST layer maps these to HTTP responses
(see app.main).
"""


class LifecycleError(Exception):
    """Base class for report lifecycle and settlement failures."""
    code = "lifecycle_error"
    status_code = 400


class ValidationError(LifecycleError):
    """Malformed input: missing required field, non-positive amount."""
    code = "validation_error"
    status_code = 422


class NotPermittedError(LifecycleError):
    """Actor is not authorized for the entity."""
    code = "permission_denied"
    status_code = 403


class InvalidStateError(LifecycleError):
    """Operation is illegal for the entity's current status."""
    code = "invalid_state"
    status_code = 409


class ConflictError(LifecycleError):
    """Operation was already performed (e.g. a second appeal)."""
    code = "conflict"
    status_code = 409


class DuplicateError(ConflictError):
    """A completed settlement already exists for this (report, type)."""
    code = "duplicate_settlement"


class NotFoundError(LifecycleError):
    """Unknown id."""
    code = "not_found"
    status_code = 404

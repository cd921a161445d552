class AppError(Exception):
    """Base app error."""


class ValidationError(AppError):
    pass


class NotFoundError(AppError):
    pass


class InvalidStateError(AppError):
    """Operation not permitted in the entity's current lifecycle state."""


class ConcurrencyConflict(AppError):
    """Stored row changed since the caller read it."""


class InvalidRate(AppError):
    pass


class FxUnavailableError(AppError):
    pass

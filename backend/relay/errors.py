"""Error taxonomy shared by the services and the HTTP/socket layers."""


class RelayError(Exception):
    """Base class for every error raised by the relay core."""

    status_code = 400

    def __init__(self, message: str = ''):
        super().__init__(message)
        self.message = message or self.__class__.__name__

    def to_dict(self):
        return {'error': self.message}


class ValidationError(RelayError):
    """Missing or malformed input. Nothing was mutated."""


class SessionClosed(ValidationError):
    """The session has ended and no longer accepts changes."""

    status_code = 409


class InvalidTransition(ValidationError):
    """Requested status change is not allowed from the current status."""

    status_code = 409


class NotFound(RelayError):
    status_code = 404


class HintUnavailable(RelayError):
    """Hints are disabled for the tier or the budget is spent."""

    status_code = 409


class StoreFailure(RelayError):
    """The replicated store rejected a read, write or subscription."""

    status_code = 503


class CreateFailed(RelayError):
    status_code = 503

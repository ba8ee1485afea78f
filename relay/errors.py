class RelayError(RuntimeError):
    """Base class for command relay failures."""


class ParseError(RelayError):
    """Raised when a raw command is not a JSON object."""


class DirectoryError(RelayError):
    """Raised when the command's working directory cannot be entered."""


class HandlerLoadError(RelayError):
    """Raised when a handler spec does not resolve to a callable."""


class ProtocolError(RelayError):
    """Raised when a worker violates the line protocol."""


class WorkerCrashedError(RelayError):
    """Raised when a worker process exits during a request."""


class CommandFailedError(RelayError):
    """Raised by clients when a worker answers with an error envelope."""

    def __init__(self, message: str, response=None):
        super().__init__(message)
        self.response = response

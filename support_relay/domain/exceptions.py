"""Errors raised by the relay core"""


class RelayError(Exception):
    """Base relay error. The offending event is dropped and the connection stays open"""

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__(detail)


class UnidentifiedConnection(RelayError):
    """Event arrived on a connection that has not joined"""


class MissingTarget(RelayError):
    """Admin event without a user to target"""


class MalformedEvent(RelayError):
    """Envelope could not be parsed or failed validation"""


class PersistenceFailure(RelayError):
    """A write to the store failed; nothing is delivered"""


class ConnectionAlreadyRegistered(RelayError):
    """Connection joined twice; a connection keeps its first identity"""


class RoleConflict(RelayError):
    """Join claimed a role different from the one pinned for the username"""

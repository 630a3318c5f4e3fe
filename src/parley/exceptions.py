"""Relay error types."""


class ParleyError(Exception):
    """Base class for all relay errors."""


class ProtocolError(ParleyError):
    """An inbound frame could not be understood.

    The message is safe to send back to the client verbatim.
    """


class UnknownMessageTypeError(ParleyError):
    """An inbound frame carried a type this server does not handle."""

    def __init__(self, message_type: object) -> None:
        super().__init__(f"Unknown message type: {message_type!r}")
        self.message_type = message_type


class NotInSessionError(ParleyError):
    """A session-scoped request came from a connection outside that session."""

    def __init__(self, session_id: str | None = None) -> None:
        super().__init__("Not in a session")
        self.session_id = session_id


class ProviderError(ParleyError):
    """A transcription or analysis provider call failed."""


class RegistryFullError(ParleyError):
    """The connection registry is at capacity."""


class MailboxFullError(ParleyError):
    """A connection already has the maximum number of jobs waiting."""

    def __init__(self, pending: int) -> None:
        super().__init__("Too many pending requests")
        self.pending = pending

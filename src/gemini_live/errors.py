"""Error taxonomy for the live client.

Connection and credential errors abort startup. Protocol errors end the
session. Transport errors are tolerated for single audio frames but end the
receive loop.
"""


class LiveClientError(Exception):
    """Base exception for live client errors."""

    pass


class CredentialError(LiveClientError):
    """Raised when no API credential can be resolved."""

    pass


class SessionConnectionError(LiveClientError, ConnectionError):
    """Raised when the duplex channel cannot be opened."""

    pass


class ProtocolError(LiveClientError):
    """Raised when a control payload fails or an operation is out of order."""

    pass


class TransportError(LiveClientError):
    """Raised when a send or receive fails mid-session."""

    pass


class ChannelClosedError(TransportError):
    """Raised when sending on a channel that is already closed."""

    pass

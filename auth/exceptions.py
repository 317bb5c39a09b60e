"""
auth/exceptions.py -- Exception hierarchy for the forward-auth engine.

None of these ever reach an end user. The engine turns every one of them
into "authentication required" or "access denied"; they exist so the
components can report *what* went wrong to the log.
"""


class PortcullisError(Exception):
    """Base class for all engine errors."""


class SessionError(PortcullisError):
    """A session cookie could not be encoded."""


class InvalidSessionError(SessionError):
    """A session cookie could not be decoded, or decoded to an incomplete record."""


class DirectoryError(PortcullisError):
    """A directory search or bind failed at the transport or protocol level."""


class DirectoryRebindError(DirectoryError):
    """The service account could not be restored after a user bind.

    The connection is left bound as somebody else; it must not be reused.
    """

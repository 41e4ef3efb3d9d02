"""Implementation details of fdhandoff.

Everything public is re-exported from the top-level package.
"""


class HandoffError(Exception):
    """Base class for errors raised by fdhandoff."""


class LongWrite(HandoffError):
    """Data for a single write cannot be buffered, even after a flush.

    The peer reads with a buffer of the same size, so there is no way to
    send a larger frame; send the data separately instead.
    """


class ShortWrite(HandoffError):
    """The kernel accepted fewer bytes than were requested."""


class ProtocolError(HandoffError):
    """A received message does not have the expected layout."""


class EmptyControlMessage(ProtocolError):
    pass


class EmptyFileDescriptors(ProtocolError):
    pass


class UnexpectedControlMessage(ProtocolError):
    pass


class TruncatedFrame(ProtocolError):
    """A metadata frame runs past the end of the received payload."""


class NotUnixConnection(HandoffError, TypeError):
    pass


class NotUnixListener(HandoffError, TypeError):
    pass


class NotFiler(HandoffError, TypeError):
    """The object does not provide a file descriptor via fileno()."""


class ConnectionClosed(HandoffError, EOFError):
    """The peer closed the connection in an orderly way."""

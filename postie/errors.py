"""Error types raised by postie."""


class PostieError(Exception):
    """Base class for all postie errors."""


class ParseError(PostieError):
    """Raised when import JSON or a persisted JSON column cannot be decoded."""


class InvalidMethodError(ParseError):
    """Raised when a string is not one of the supported HTTP methods."""


class PersistenceError(PostieError):
    """Raised when the SQLite store fails to read or write."""


class NetworkError(PostieError):
    """Raised when an HTTP request cannot be dispatched or completed."""


class UnsupportedResponseError(PostieError):
    """Raised internally when a response content type cannot be classified.

    Never escapes the classifier: it is turned into an UNKNOWN response.
    """


class NotFoundError(PostieError):
    """Raised when a collection, folder or request targeted by an edit is absent."""

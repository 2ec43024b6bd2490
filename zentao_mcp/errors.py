"""
Exception taxonomy for the ZenTao MCP server.

Every failure raised by the client, the paged fetcher or the aggregator is a
ZentaoError. The MCP layer turns any of them into an error-flagged tool
response, so the calling assistant can tell "the tool broke" apart from
"upstream answered with status 0".
"""


class ZentaoError(Exception):
    """Base class for all local failures."""


class AuthError(ZentaoError):
    """Token exchange failed or returned no usable token."""


class UpstreamError(ZentaoError):
    """
    A well-formed JSON response that carries an explicit ``error`` field.

    The parsed payload is kept on ``payload`` for diagnostics.
    """

    def __init__(self, message, payload=None):
        super().__init__(message)
        self.payload = payload


class TransportParseError(ZentaoError):
    """Response body is not valid JSON."""

    def __init__(self, message, snippet=""):
        super().__init__(message)
        self.snippet = snippet


class TransportError(ZentaoError):
    """Network-level failure: DNS, refused connection, timeout."""


class ValidationError(ZentaoError):
    """A required argument is missing or an argument value is not accepted."""

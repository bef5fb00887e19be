from __future__ import annotations


class TsdmError(Exception):
    """Base class for every error raised by tsdmcheckin."""

    retryable: bool = False


class TransientRemoteError(TsdmError):
    """Network failure, timeout or an HTTP error status."""

    retryable = True


class DomainError(TsdmError):
    """The forum answered with something we could not make sense of.

    Usually caused by a stale cookie or temporary server state, so it is
    retried exactly like a transient error.
    """

    retryable = True


class SessionExpiredError(DomainError):
    """The forum no longer accepts the account cookie.

    Retrying cannot help until the cookie in the config file is replaced.
    """

    retryable = False


class ConfigurationError(TsdmError):
    """Missing or malformed configuration. Fatal at startup only."""

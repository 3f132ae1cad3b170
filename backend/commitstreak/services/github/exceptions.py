"""Custom exceptions for GitHub API access."""

from __future__ import annotations


class GithubError(Exception):
    """Base exception for upstream failures."""


class CredentialInvalidError(GithubError):
    """Raised when the token is expired or revoked. Never retried."""


class RateLimitExceededError(GithubError):
    """Raised when the quota cannot be waited out before the caller's deadline."""

    def __init__(self, message: str, retry_after: int | float | None = None):
        super().__init__(message)
        self.retry_after = retry_after


class UpstreamUnavailableError(GithubError):
    """Raised when 5xx responses or network failures outlast the retry budget."""


class RetryableUpstreamError(GithubError):
    """
    Raised for a single transient failure (5xx, connection reset, timeout).

    Only used inside the client's retry loop; callers see
    UpstreamUnavailableError once retries are exhausted.
    """


class RepositoryNotFoundError(GithubError):
    """Raised on 404/410, e.g. a repository deleted mid-run."""


class AccessDeniedError(GithubError):
    """Raised on a 403 that is not a rate limit (private repository, SSO)."""


class MalformedResponseError(GithubError):
    """Raised when a payload does not match the expected shape."""

"""Error taxonomy shared by services and API handlers."""

from __future__ import annotations


class AgentSourceError(Exception):
    """Base error carrying the HTTP status and the terse public message."""

    status_code = 500
    public_message = "Internal error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.public_message)
        self.detail = detail or self.public_message


class BadRequest(AgentSourceError):
    status_code = 400
    public_message = "Bad request"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail)
        # Validation messages are safe to echo back.
        self.public_message = self.detail


class AccessDenied(AgentSourceError):
    """Ownership or citation-membership failure. Rendered identically for every cause."""

    status_code = 403
    public_message = "Access denied"

    def __init__(self, reason: str = "denied") -> None:
        super().__init__(reason)
        self.reason = reason


class NotFound(AgentSourceError):
    status_code = 404
    public_message = "File not found"


class SigningFailure(AgentSourceError):
    """Object-store signing failed or timed out."""


class PersistenceFailure(AgentSourceError):
    """A write to the citation or message-ownership tables failed."""


class OrchestratorFailure(AgentSourceError):
    """Any failure on the prefetch path."""


__all__ = [
    "AgentSourceError",
    "BadRequest",
    "AccessDenied",
    "NotFound",
    "SigningFailure",
    "PersistenceFailure",
    "OrchestratorFailure",
]

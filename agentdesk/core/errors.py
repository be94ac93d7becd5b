from __future__ import annotations


class AgentDeskError(Exception):
    """Base error for AgentDesk."""

    code = "INTERNAL_ERROR"

    def __init__(self, message: str = "", *, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message or self.__class__.__doc__ or ""
        self.details = details


class InvalidInputError(AgentDeskError):
    """Malformed or out-of-enumeration input; never retried automatically."""

    code = "INVALID_INPUT"


class NotFoundError(AgentDeskError):
    """Entity absent or invisible to the acting tenant."""

    code = "NOT_FOUND"


class ForbiddenError(AgentDeskError):
    """Principal lacks the role or tenant ownership for this operation."""

    code = "FORBIDDEN"


class ConflictError(AgentDeskError):
    """Conversation state machine violation."""

    code = "CONFLICT"


class UnavailableError(AgentDeskError):
    """Transient store or knowledge index failure; safe to retry."""

    code = "UNAVAILABLE"


class RelevanceConfigError(AgentDeskError):
    """Unknown relevance scorer configured."""


class ComposerConfigError(AgentDeskError):
    """Unknown reply composer configured."""

# election_ledger/errors.py

# Error taxonomy shared by the ledger, the storage layer and the HTTP routes.
# Every error a caller can act on is a LedgerError; `kind` groups them so the
# API can tell "already voted" apart from "bad request".


class LedgerError(Exception):
    kind = 'ledger'

    def __init__(self, message=None):
        super().__init__(message or self.__class__.__doc__ or self.kind)
        self.message = str(self)


class ValidationError(LedgerError):
    """Invalid input."""
    kind = 'validation'


class ConflictError(LedgerError):
    """The request conflicts with the current ledger state."""
    kind = 'conflict'


class DuplicateEmail(ConflictError):
    """Email already registered."""


class AdminAlreadyExists(ConflictError):
    """Only one admin is allowed."""


class AlreadyVoted(ConflictError):
    """You have already voted in this election."""


class InvalidPhase(ConflictError):
    """The election is not in a phase that allows this operation."""


class AlreadyResponded(ConflictError):
    """You have already responded to this survey."""


class NotFoundError(LedgerError):
    """Record not found."""
    kind = 'not_found'


class AuthenticationError(LedgerError):
    """Authentication required."""
    kind = 'authentication'


class InvalidCredentials(AuthenticationError):
    """Invalid email or password."""


class NotAuthenticated(AuthenticationError):
    """Not authenticated."""


class PermissionDenied(LedgerError):
    """Permission denied."""
    kind = 'permission'


class ResourceError(LedgerError):
    """Storage or memory resource failure."""
    kind = 'resource'

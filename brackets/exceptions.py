"""Error kinds raised by the bracket engine."""


class BracketError(Exception):
    """Base class for all bracket engine errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(BracketError):
    """Tournament, matchup, round or vote does not exist."""


class InvalidStateError(BracketError):
    """Operation is not allowed in the current bracket or voting window state."""


class InvalidInputError(BracketError):
    """Request data is malformed or does not belong to the target matchup."""


class UnauthorizedError(BracketError):
    """Caller is not allowed to perform the operation.

    ``requires_login`` is set when the caller is anonymous and the operation
    needs an identity; otherwise the caller is known but lacks ownership.
    """

    def __init__(self, message: str, requires_login: bool = False):
        super().__init__(message)
        self.requires_login = requires_login


class ConflictError(BracketError):
    """Bracket or tournament record already exists."""


class StorageError(BracketError):
    """Transactional store failed; the transaction was rolled back."""

"""
Vault Exception Classes
"""


class VaultError(Exception):
    """Base exception for vault hierarchy operations"""
    pass


class NotInitialized(VaultError):
    """Raised when the entity store is unavailable"""
    pass


class ConstraintViolation(VaultError):
    """Raised on an invalid parent reference, duplicate id or dangling edge"""
    pass


class NotFound(VaultError):
    """Raised when a referenced group or item does not exist"""
    pass


class CycleDetected(VaultError):
    """Raised when a group's ancestor chain revisits an id"""

    def __init__(self, message: str, group_id: str = ""):
        super().__init__(message)
        self.group_id = group_id


class RecursionLimitExceeded(VaultError):
    """Marks a reference chain cut short by the depth or cycle guard.

    Returned inside a Resolution, never raised by the resolver.
    """

    def __init__(self, message: str, depth: int = 0):
        super().__init__(message)
        self.depth = depth

"""
Error Taxonomy

Expected failures raised by the loan engine. Every error carries a
human-readable message that the command surface hands back to the UI verbatim.
"""

from typing import Optional


class PayrollError(Exception):
    """Base class for expected, user-facing failures"""

    error_type = "error"

    def __init__(self, message: str, *, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.user_message = message
        self.cause = cause


class ValidationError(PayrollError):
    """Malformed or out-of-range input; raised before any write happens"""

    error_type = "validation"


class PermissionDeniedError(PayrollError):
    """Actor lacks the capability required for the operation"""

    error_type = "permission"


class NotFoundError(PayrollError):
    """Referenced loan or installment does not exist"""

    error_type = "not_found"


class PersistenceError(PayrollError):
    """Underlying record store rejected a read or write"""

    error_type = "persistence"


class StorageError(PayrollError):
    """Contract document storage failed"""

    error_type = "storage"

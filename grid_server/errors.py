# grid_server/errors.py - Error taxonomy for the grid backend

"""
Every error carries a stable ``code`` that is returned to clients and the
HTTP status the route layer converts it to.
"""
from typing import Any, Dict


class GridError(Exception):
    """Base class for errors surfaced as rejected requests"""
    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_detail(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message}


class InvalidColumn(GridError):
    """A filter or sort references a column outside the table"""
    code = "INVALID_COLUMN"
    status_code = 400


class UnsupportedOperator(GridError):
    """Operator does not apply to the column's declared type"""
    code = "UNSUPPORTED_OPERATOR"
    status_code = 400


class MalformedFilterValue(GridError):
    """Filter value missing, or not a finite number where one is required"""
    code = "MALFORMED_FILTER_VALUE"
    status_code = 400


class InvalidIdentifier(GridError):
    """Identifier failed the format check before use in a statement"""
    code = "INVALID_IDENTIFIER"
    status_code = 400


class NotFound(GridError):
    code = "NOT_FOUND"
    status_code = 404


class MutationFailed(GridError):
    """Write did not apply; safe to retry"""
    code = "MUTATION_FAILED"
    status_code = 503

from typing import List, Optional

from fastapi import status


class AppException(Exception):
    """Base application exception"""
    def __init__(self, message: str, status_code: int = 500):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class NotFoundError(AppException):
    def __init__(self, message: str = "Resource not found"):
        super().__init__(message, status.HTTP_404_NOT_FOUND)


class ValidationError(AppException):
    def __init__(self, message: str = "Validation failed"):
        super().__init__(message, status.HTTP_422_UNPROCESSABLE_ENTITY)


class QuestionValidationError(ValidationError):
    """Question rejected before any extraction happened."""


class ComparisonUnderspecifiedError(ValidationError):
    def __init__(self, found: Optional[List[str]] = None):
        self.found = found or []
        super().__init__("Could not identify two values to compare")


class PlanRejectedError(ValidationError):
    """Raised by the fail-closed sanitizer."""
    def __init__(self, rejected: List[str]):
        self.rejected = rejected
        super().__init__(f"Query plan references fields outside the schema: {', '.join(rejected)}")


class NoDataFoundError(NotFoundError):
    def __init__(self, message: str = "No data found for the given query"):
        super().__init__(message)


class DatabaseError(AppException):
    def __init__(self, message: str = "Database error"):
        super().__init__(message, status.HTTP_500_INTERNAL_SERVER_ERROR)


class QueryExecutionError(DatabaseError):
    """Execution failure; keeps the statement, the cause is chained via ``from``."""
    def __init__(self, sql: str, cause: Exception):
        self.sql = sql
        self.cause = cause
        super().__init__(f"Database query failed: {cause}")
        self.status_code = status.HTTP_502_BAD_GATEWAY

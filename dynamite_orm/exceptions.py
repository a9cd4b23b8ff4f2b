"""
Exception hierarchy for Dynamite ORM.

Every error raised by the mapping layer derives from DynamiteError. Errors
coming from the store client itself (botocore's ClientError for DynamoDB)
are propagated untranslated unless stated otherwise.
"""

from typing import Optional


class DynamiteError(Exception):
    """Base exception for Dynamite ORM errors."""
    pass


class ConfigurationError(DynamiteError):
    """Invalid schema declaration (keys, names, defaults, relations)."""
    pass


class ValidationError(DynamiteError):
    """
    A field value was rejected.

    Raised by write pipeline validators at assignment time, by lazy
    validators and required-field checks at persist time.
    """

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field


class QueryError(DynamiteError):
    """Invalid query input: unknown operator, negative limit, bad options."""
    pass


class RelationError(QueryError):
    """Include or junction operation referencing an undeclared relation."""
    pass


class MultipleResultsError(QueryError):
    """Raised when a single result was expected but several matched."""
    pass


class NotConnectedError(DynamiteError):
    """A model operation was attempted without a connected client."""
    pass


class PersistenceError(DynamiteError):
    """A write could not be performed against the store."""
    pass


class TransactionError(DynamiteError):
    """A transaction was rejected or used incorrectly."""
    pass


class BatchSizeError(TransactionError):
    """More operations were queued than the store applies atomically."""
    pass

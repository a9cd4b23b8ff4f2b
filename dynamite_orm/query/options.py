"""
Query option parsing.

Options are validated with pydantic so bad input fails before any store
call. Pydantic errors are re-raised as QueryError.
"""

from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from dynamite_orm.exceptions import QueryError

SortDirection = Literal["ASC", "DESC"]

OPTION_NAMES = frozenset(
    {"limit", "skip", "offset", "order", "attributes", "include", "with_trashed", "only_trashed"}
)


def _normalize_direction(value: Any) -> Any:
    if isinstance(value, str):
        return value.upper()
    return value


class QueryOptions(BaseModel):
    """
    Options accepted by Model.where() and related queries.

    Attributes:
        limit: Maximum number of records; 0 returns nothing without a store call
        skip: Number of matching records to drop before the limit applies
        offset: Alias for skip
        order: "ASC"/"DESC" on the default sort field, or {field: direction}
        attributes: Field projection; empty means all fields
        include: Relations to load, {name: True | IncludeOptions}
        with_trashed: Include soft-deleted records
        only_trashed: Return only soft-deleted records
    """

    model_config = ConfigDict(extra="forbid")

    limit: Optional[int] = Field(default=None, ge=0, strict=True)
    skip: Optional[int] = Field(default=None, ge=0, strict=True)
    offset: Optional[int] = Field(default=None, ge=0, strict=True)
    order: Optional[Union[SortDirection, dict[str, SortDirection]]] = None
    attributes: Optional[list[str]] = None
    include: Optional[dict[str, Union[bool, "IncludeOptions"]]] = None
    with_trashed: bool = False
    only_trashed: bool = False

    @field_validator("order", mode="before")
    @classmethod
    def _upper_order(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {k: _normalize_direction(v) for k, v in value.items()}
        return _normalize_direction(value)

    @field_validator("include", mode="before")
    @classmethod
    def _normalize_include(cls, value: Any) -> Any:
        if value is None:
            return None
        if isinstance(value, str):
            return {value: True}
        if isinstance(value, (list, tuple, set)):
            return {name: True for name in value}
        return value

    @property
    def start(self) -> int:
        """Effective number of records to skip."""
        if self.skip is not None:
            return self.skip
        return self.offset or 0

    @classmethod
    def parse(cls, options: Union[None, dict[str, Any], "QueryOptions"]) -> "QueryOptions":
        """
        Build options from a dict, raising QueryError on invalid input.

        Example:
            >>> QueryOptions.parse({"limit": -1})
            Traceback (most recent call last):
            ...
            dynamite_orm.exceptions.QueryError: Invalid query options: limit: ...
        """
        if isinstance(options, cls):
            return options
        try:
            return cls.model_validate(options or {})
        except PydanticValidationError as e:
            raise QueryError(f"Invalid query options: {_format_errors(e)}") from e


class IncludeOptions(QueryOptions):
    """Per-relation options inside an include, with an extra where filter."""

    where: Optional[dict[str, Any]] = None


QueryOptions.model_rebuild()
IncludeOptions.model_rebuild()


def _format_errors(error: PydanticValidationError) -> str:
    parts = []
    for detail in error.errors():
        location = ".".join(str(part) for part in detail["loc"])
        parts.append(f"{location}: {detail['msg']}")
    return "; ".join(parts)

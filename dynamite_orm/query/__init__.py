"""Query builder for Dynamite ORM."""

from dynamite_orm.query.base import QueryBuilder
from dynamite_orm.query.expressions import FilterCompiler
from dynamite_orm.query.options import IncludeOptions, QueryOptions

__all__ = ["QueryBuilder", "FilterCompiler", "QueryOptions", "IncludeOptions"]

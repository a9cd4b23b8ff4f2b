"""
Query builder and executor for Dynamite ORM.

Queries are lazy: building one never touches the store. Awaiting the
builder (or calling all()) compiles the filter, scans page by page until
the store reports no more pages, then sorts, paginates and resolves
includes on the client side.
"""

import functools
import logging
from typing import Any, Optional, TYPE_CHECKING

from dynamite_orm.backends.base import Store
from dynamite_orm.exceptions import MultipleResultsError, QueryError, RelationError
from dynamite_orm.query.expressions import (
    CompiledFilter,
    CompiledProjection,
    FilterCompiler,
    compile_projection,
    lookups_to_filter,
    normalize_operator,
)
from dynamite_orm.query.options import OPTION_NAMES, QueryOptions

if TYPE_CHECKING:
    from dynamite_orm.models.base import Model
    from dynamite_orm.models.registry import RecordDescriptor

logger = logging.getLogger(__name__)


class QueryBuilder:
    """
    Fluent, awaitable query over one model class.

    Each chaining method mutates the builder and returns it.

    Example:
        >>> users = await User.where(age__gte=18).order_by("-age").limit(10)
        >>> first = await User.where({"role": "admin"}).first()
        >>> total = await User.where(status="active").count()
    """

    def __init__(self, model_class: type["Model"]):
        """
        Initialize query builder.

        Args:
            model_class: The model class being queried
        """
        self.model_class = model_class
        self._filters: list[dict[str, Any]] = []
        self._options: dict[str, Any] = {}

    def filter(self, *args: Any, **kwargs: Any) -> "QueryBuilder":
        """
        Add conditions and options.

        Accepted positional forms:
            filter({"age": {"gte": 18}})
            filter({"age": {"gte": 18}}, {"limit": 5})
            filter("role", "admin")
            filter("age", ">=", 18)

        Keyword arguments named like an option (limit, order, include, ...)
        set that option; any other keyword is a Django-style lookup such as
        age__gte=18.

        Returns:
            Self for method chaining
        """
        if args:
            first = args[0]
            if isinstance(first, str):
                if len(args) == 2:
                    self._filters.append({first: args[1]})
                elif len(args) == 3:
                    operator = normalize_operator(args[1])
                    if operator not in ("in", "not_in") and isinstance(args[2], (list, tuple, set, frozenset)):
                        raise QueryError(
                            f"Operator '{args[1]}' cannot compare '{first}' with a list; "
                            f"use 'in' or where('{first}', [...])"
                        )
                    self._filters.append({first: {args[1]: args[2]}})
                else:
                    raise QueryError(
                        "Expected (field, value) or (field, operator, value), "
                        f"got {len(args)} positional arguments"
                    )
            elif first is None or isinstance(first, dict):
                if len(args) > 2:
                    raise QueryError("Expected (filter, options), got extra positional arguments")
                if first:
                    self._filters.append(first)
                if len(args) == 2 and args[1]:
                    if not isinstance(args[1], dict):
                        raise QueryError("Query options must be a mapping")
                    self._options.update(args[1])
            else:
                raise QueryError(f"Unsupported filter argument: {first!r}")

        lookups = {}
        for name, value in kwargs.items():
            if name in OPTION_NAMES:
                self._options[name] = value
            else:
                lookups[name] = value
        if lookups:
            self._filters.append(lookups_to_filter(lookups))
        return self

    # Alias matching the lookup style
    and_ = filter

    def limit(self, n: int) -> "QueryBuilder":
        """
        Limit the number of results.

        Example:
            >>> query.limit(10)
        """
        self._options["limit"] = n
        return self

    def skip(self, n: int) -> "QueryBuilder":
        """
        Skip the first n results.

        Example:
            >>> query.skip(20)  # Skip first 20 results
        """
        self._options["skip"] = n
        return self

    offset = skip

    def order(self, direction: Any) -> "QueryBuilder":
        """
        Set the sort order: "ASC", "DESC" or a {field: direction} mapping.

        Example:
            >>> query.order({"age": "DESC", "name": "ASC"})
        """
        self._options["order"] = direction
        return self

    def order_by(self, *fields: str) -> "QueryBuilder":
        """
        Order results by fields.

        Use "-" prefix for descending order.

        Example:
            >>> query.order_by("-created_at", "name")  # Newest first, then by name
        """
        order = self._options.get("order")
        if not isinstance(order, dict):
            order = {}
        for name in fields:
            if name.startswith("-"):
                order[name[1:]] = "DESC"
            else:
                order[name] = "ASC"
        self._options["order"] = order
        return self

    def select(self, *fields: str) -> "QueryBuilder":
        """
        Select only specific fields (projection).

        Example:
            >>> query.select("id", "name")
        """
        self._options["attributes"] = list(fields)
        return self

    def include(self, *names: str, **relations: Any) -> "QueryBuilder":
        """
        Eager-load relations.

        Example:
            >>> query.include("profile", orders={"limit": 5, "order": {"total": "DESC"}})
        """
        include = dict(self._options.get("include") or {})
        for name in names:
            include[name] = True
        include.update(relations)
        self._options["include"] = include
        return self

    def with_trashed(self) -> "QueryBuilder":
        """Include soft-deleted records."""
        self._options["with_trashed"] = True
        return self

    def only_trashed(self) -> "QueryBuilder":
        """Return only soft-deleted records."""
        self._options["only_trashed"] = True
        return self

    @property
    def options(self) -> QueryOptions:
        """Validated options, raising QueryError on bad input."""
        return QueryOptions.parse(self._options)

    @property
    def conditions(self) -> dict[str, Any]:
        """All conditions added so far, as one structural filter."""
        if not self._filters:
            return {}
        if len(self._filters) == 1:
            return self._filters[0]
        return {"and": list(self._filters)}

    async def all(self) -> list["Model"]:
        """
        Execute the query and return all results.

        Example:
            >>> users = await User.where(age__gte=18).all()
        """
        return await run_query(self.model_class, self.conditions, self.options)

    def __await__(self):
        return self.all().__await__()

    async def first(self) -> Optional["Model"]:
        """
        Execute the query and return the first result.

        Example:
            >>> user = await User.where(email="alice@example.com").first()
        """
        options = self.options.model_copy(update={"limit": 1})
        results = await run_query(self.model_class, self.conditions, options)
        return results[0] if results else None

    async def last(self) -> Optional["Model"]:
        """
        Execute the query with the sort order reversed and return the first result.

        Without an explicit order this is the record with the largest
        default sort value.

        Example:
            >>> user = await User.where().order_by("created_at").last()  # Most recent
        """
        options = self.options
        order = options.order
        if order is None:
            reversed_order: Any = "DESC"
        elif isinstance(order, dict):
            reversed_order = {name: _flip(direction) for name, direction in order.items()}
        else:
            reversed_order = _flip(order)
        options = options.model_copy(update={"order": reversed_order, "limit": 1})
        results = await run_query(self.model_class, self.conditions, options)
        return results[0] if results else None

    async def count(self) -> int:
        """
        Count matching records, ignoring limit and skip.

        Only the key attributes are read from the store.

        Example:
            >>> total = await User.where(age__gte=18).count()
        """
        descriptor = self.model_class.describe()
        options = self.options
        compiled = compile_filter(descriptor, self.conditions, options)
        projection = compile_projection([f.name for f in descriptor.key_fields], descriptor.storage_name)
        store = self.model_class._get_client().store
        items = await scan_all(store, descriptor.collection_name, compiled, projection)
        return len(items)

    async def exists(self) -> bool:
        """
        Check if any record matches, stopping at the first hit.

        Example:
            >>> if await User.where(email="alice@example.com").exists():
            ...     print("Email already registered")
        """
        descriptor = self.model_class.describe()
        compiled = compile_filter(descriptor, self.conditions, self.options)
        projection = compile_projection([f.name for f in descriptor.key_fields], descriptor.storage_name)
        store = self.model_class._get_client().store
        items = await scan_all(store, descriptor.collection_name, compiled, projection, stop_after=1)
        return bool(items)

    async def get(self, **conditions: Any) -> Optional["Model"]:
        """
        Get a single record matching conditions.

        Raises:
            MultipleResultsError: If multiple records match

        Example:
            >>> user = await User.query().get(email="alice@example.com")
        """
        results = await self.filter(**conditions).limit(2).all()
        if len(results) > 1:
            raise MultipleResultsError(f"Expected 1 result, got {len(results)}")
        return results[0] if results else None

    def __repr__(self) -> str:
        return f"<QueryBuilder {self.model_class.__name__} {self.conditions!r} {self._options!r}>"


def _flip(direction: str) -> str:
    return "ASC" if direction == "DESC" else "DESC"


def _names_field(filters: Any, name: str) -> bool:
    """Whether a structural filter mentions a field, nested and-groups included."""
    if isinstance(filters, (list, tuple)):
        return any(_names_field(f, name) for f in filters)
    if not isinstance(filters, dict):
        return False
    for key, value in filters.items():
        if key == name:
            return True
        if key in ("and", "$and") and _names_field(value, name):
            return True
    return False


def compile_filter(
    descriptor: "RecordDescriptor",
    filters: dict[str, Any],
    options: QueryOptions,
) -> Optional[CompiledFilter]:
    """
    Compile a structural filter for a record type, adding the soft-delete scope.

    Soft-deleted records are excluded unless with_trashed is set or the
    filter already names the soft-delete field; only_trashed selects them
    exclusively.
    """
    soft_delete = descriptor.soft_delete_field
    if soft_delete is not None:
        if options.only_trashed:
            filters = _conjoin(filters, {soft_delete.name: {"ne": None}})
        elif not options.with_trashed and not _names_field(filters, soft_delete.name):
            filters = _conjoin(filters, {soft_delete.name: None})
    return FilterCompiler(descriptor.storage_name).compile(filters)


def _conjoin(left: dict[str, Any], right: dict[str, Any]) -> dict[str, Any]:
    if not left:
        return right
    if not right:
        return left
    return {"and": [left, right]}


async def scan_all(
    store: Store,
    collection: str,
    filter: Optional[CompiledFilter] = None,
    projection: Optional[CompiledProjection] = None,
    stop_after: Optional[int] = None,
) -> list[dict[str, Any]]:
    """
    Scan every page of a collection.

    Pages are fetched one after another until the store returns no cursor;
    short or empty pages do not end the scan. With stop_after, scanning
    stops once that many items were collected.
    """
    items: list[dict[str, Any]] = []
    cursor = None
    pages = 0
    while True:
        page = await store.scan(collection, filter=filter, projection=projection, cursor=cursor)
        pages += 1
        items.extend(page.items)
        logger.debug(f"Scanned page {pages} of {collection}: {len(page.items)} items")
        if stop_after is not None and len(items) >= stop_after:
            break
        cursor = page.cursor
        if not cursor:
            break
    return items


def _compare_values(left: Any, right: Any) -> int:
    if left == right:
        return 0
    # Absent values sort last in either direction
    if left is None:
        return 1
    if right is None:
        return -1
    try:
        return -1 if left < right else 1
    except TypeError:
        return -1 if str(left) < str(right) else 1


def _sort_items(items: list[dict[str, Any]], sort_spec: list[tuple[str, str]]) -> list[dict[str, Any]]:
    def compare(a: dict[str, Any], b: dict[str, Any]) -> int:
        for attribute, direction in sort_spec:
            left, right = a.get(attribute), b.get(attribute)
            result = _compare_values(left, right)
            if result == 0:
                continue
            if left is None or right is None:
                return result
            return result if direction == "ASC" else -result
        return 0

    return sorted(items, key=functools.cmp_to_key(compare))


def _first_field(filters: Any) -> Optional[str]:
    if isinstance(filters, (list, tuple)):
        return next((name for name in map(_first_field, filters) if name), None)
    if not isinstance(filters, dict):
        return None
    for key, value in filters.items():
        name = _first_field(value) if key in ("and", "$and") else key
        if name:
            return name
    return None


def _sort_spec(
    descriptor: "RecordDescriptor",
    filters: dict[str, Any],
    options: QueryOptions,
) -> list[tuple[str, str]]:
    """
    Resolve the order option to (storage name, direction) pairs.

    A bare direction applies to the first filtered field, falling back to
    the primary key.
    """
    order = options.order
    if order is None:
        return []
    if isinstance(order, dict):
        return [(descriptor.storage_name(name), direction) for name, direction in order.items()]
    default_field = _first_field(filters) or descriptor.primary_key.name
    return [(descriptor.storage_name(default_field), order)]


def _fetch_attributes(
    descriptor: "RecordDescriptor",
    options: QueryOptions,
    sort_spec: list[tuple[str, str]],
) -> tuple[Optional[list[str]], Optional[list[str]]]:
    """
    Attributes to read from the store and attributes to expose on instances.

    Join keys of included relations are both read and exposed; sort
    attributes are read only.
    """
    if not options.attributes:
        return None, None
    exposed = [descriptor.storage_name(name) for name in options.attributes]
    for name in (options.include or {}):
        field = descriptor.get_relation(name)
        if field is not None:
            join_key = descriptor.storage_name(field.relation.local_key)
            if join_key not in exposed:
                exposed.append(join_key)
    fetched = list(exposed)
    for attribute, _direction in sort_spec:
        if attribute not in fetched:
            fetched.append(attribute)
    return fetched, exposed


async def run_query(
    model_class: type["Model"],
    filters: dict[str, Any],
    options: QueryOptions,
) -> list["Model"]:
    """
    Execute a query: scan, sort, paginate, materialize, resolve includes.

    Args:
        model_class: Model class to query
        filters: Structural filter
        options: Parsed query options

    Returns:
        Matching model instances
    """
    if options.limit == 0:
        return []

    descriptor = model_class.describe()
    store = model_class._get_client().store
    for name in (options.include or {}):
        if descriptor.get_relation(name) is None:
            raise RelationError(f"{model_class.__name__} has no relation '{name}'")
    compiled = compile_filter(descriptor, filters, options)
    sort_spec = _sort_spec(descriptor, filters, options)
    fetched, exposed = _fetch_attributes(descriptor, options, sort_spec)
    projection = compile_projection(fetched)

    start = options.start
    stop_after = None
    if options.limit is not None and not sort_spec:
        stop_after = start + options.limit

    items = await scan_all(store, descriptor.collection_name, compiled, projection, stop_after)
    if sort_spec:
        items = _sort_items(items, sort_spec)
    end = start + options.limit if options.limit is not None else None
    items = items[start:end]
    logger.debug(f"Query on {descriptor.collection_name} returned {len(items)} items")

    records = [await model_class.load(item, exposed) for item in items]
    if options.include:
        from dynamite_orm.query.relations import resolve_includes
        await resolve_includes(records, options.include, model_class)
    return records

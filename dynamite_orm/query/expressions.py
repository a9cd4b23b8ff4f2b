"""
Filter compilation for Dynamite ORM.

Turns a structural filter into a placeholder-based condition expression in
the DynamoDB filter dialect, together with its name and value tables:

    >>> compiled = FilterCompiler().compile({"age": {"gte": 18}, "role": "admin"})
    >>> compiled.expression
    '#n0 >= :v0 AND #n1 = :v1'
    >>> compiled.names
    {'#n0': 'age', '#n1': 'role'}
    >>> compiled.values
    {':v0': 18, ':v1': 'admin'}

The compiled conditions can also be evaluated against plain item dicts,
which is how the in-memory store filters.
"""

from dataclasses import dataclass, field as dataclass_field
from typing import Any, Callable, Iterable, Optional

from dynamite_orm.exceptions import QueryError
from dynamite_orm.models.fields import UNSET


# Supported operators and their meanings
OPERATORS = {
    "eq": "equals",
    "ne": "not equals",
    "lt": "less than",
    "lte": "less than or equal",
    "gt": "greater than",
    "gte": "greater than or equal",
    "in": "in list",
    "not_in": "not in list",
    "contains": "contains",
    "begins_with": "starts with",
}

OPERATOR_ALIASES = {
    "=": "eq",
    "==": "eq",
    "$eq": "eq",
    "!=": "ne",
    "<>": "ne",
    "$ne": "ne",
    "<": "lt",
    "$lt": "lt",
    "<=": "lte",
    "$lte": "lte",
    ">": "gt",
    "$gt": "gt",
    ">=": "gte",
    "$gte": "gte",
    "$in": "in",
    "not-in": "not_in",
    "nin": "not_in",
    "$nin": "not_in",
    "include": "contains",
    "$include": "contains",
    "begins-with": "begins_with",
    "startswith": "begins_with",
    "$beginsWith": "begins_with",
}

_COMPARISON_SYMBOLS = {
    "eq": "=",
    "ne": "<>",
    "lt": "<",
    "lte": "<=",
    "gt": ">",
    "gte": ">=",
}

_AND_KEYS = ("and", "$and")

# DynamoDB accepts at most this many operands in one IN list
MAX_IN_OPERANDS = 100


def normalize_operator(operator: str) -> str:
    """
    Map an operator or one of its aliases to its canonical name.

    Raises:
        QueryError: If the operator is not recognized
    """
    if operator in OPERATORS:
        return operator
    canonical = OPERATOR_ALIASES.get(operator)
    if canonical is None:
        valid = ", ".join(list(OPERATORS) + list(OPERATOR_ALIASES))
        raise QueryError(f"Invalid operator: {operator}. Valid operators: {valid}")
    return canonical


def parse_field_lookup(field_lookup: str) -> tuple[str, str]:
    """
    Parse a field lookup string into field name and operator.

    Args:
        field_lookup: Field lookup string (e.g., "age__gte")

    Returns:
        Tuple of (field_name, operator)

    Example:
        >>> parse_field_lookup("age__gte")
        ('age', 'gte')
        >>> parse_field_lookup("name")
        ('name', 'eq')
    """
    if "__" in field_lookup:
        field, operator = field_lookup.rsplit("__", 1)
        return field, operator
    return field_lookup, "eq"


def lookups_to_filter(conditions: dict[str, Any]) -> dict[str, Any]:
    """
    Convert Django-style keyword lookups into a structural filter.

    Example:
        >>> lookups_to_filter({"age__gte": 18, "age__lt": 65, "name": "Bo"})
        {'age': {'gte': 18, 'lt': 65}, 'name': 'Bo'}
    """
    result: dict[str, Any] = {}
    for lookup, value in conditions.items():
        field, operator = parse_field_lookup(lookup)
        if operator == "eq" and "__" not in lookup:
            result[field] = value
            continue
        existing = result.get(field)
        if not isinstance(existing, dict):
            existing = {} if existing is None else {"eq": existing}
            result[field] = existing
        existing[operator] = value
    return result


@dataclass
class Condition:
    """
    One predicate of a compiled filter, expressed through placeholders.

    Attributes:
        kind: Canonical operator, or "exists", "not_exists", "never"
        name: Name placeholder (e.g. "#n0")
        values: Value placeholders (e.g. [":v0"])
    """

    kind: str
    name: str
    values: list[str] = dataclass_field(default_factory=list)

    def render(self) -> str:
        if self.kind in _COMPARISON_SYMBOLS:
            return f"{self.name} {_COMPARISON_SYMBOLS[self.kind]} {self.values[0]}"
        if self.kind in ("in", "not_in"):
            return self._render_membership()
        if self.kind == "contains":
            return f"contains({self.name}, {self.values[0]})"
        if self.kind == "begins_with":
            return f"begins_with({self.name}, {self.values[0]})"
        if self.kind == "exists":
            return f"attribute_exists({self.name})"
        if self.kind == "not_exists":
            return f"attribute_not_exists({self.name})"
        if self.kind == "never":
            return f"(attribute_not_exists({self.name}) AND attribute_exists({self.name}))"
        raise QueryError(f"Cannot render condition kind '{self.kind}'")

    def _render_membership(self) -> str:
        # Long candidate lists become an OR of IN groups
        groups = [
            self.values[start:start + MAX_IN_OPERANDS]
            for start in range(0, len(self.values), MAX_IN_OPERANDS)
        ]
        joined = " OR ".join(f"{self.name} IN ({', '.join(group)})" for group in groups)
        if self.kind == "not_in":
            return f"NOT ({joined})"
        return joined if len(groups) == 1 else f"({joined})"

    def matches(self, item: dict[str, Any], names: dict[str, str], values: dict[str, Any]) -> bool:
        """Evaluate this condition against an item using the placeholder tables."""
        attribute = names[self.name]
        present = attribute in item
        actual = item.get(attribute)
        operands = [values[v] for v in self.values]

        if self.kind == "exists":
            return present
        if self.kind == "not_exists":
            return not present
        if self.kind == "never":
            return False
        if self.kind == "ne":
            return not present or actual != operands[0]
        if self.kind == "not_in":
            return not present or actual not in operands
        if not present:
            return False
        try:
            if self.kind == "eq":
                return bool(actual == operands[0])
            if self.kind == "lt":
                return bool(actual < operands[0])
            if self.kind == "lte":
                return bool(actual <= operands[0])
            if self.kind == "gt":
                return bool(actual > operands[0])
            if self.kind == "gte":
                return bool(actual >= operands[0])
        except TypeError:
            return False
        if self.kind == "in":
            return actual in operands
        if self.kind == "contains":
            if isinstance(actual, str):
                return isinstance(operands[0], str) and operands[0] in actual
            if isinstance(actual, (list, tuple, set, frozenset)):
                return operands[0] in actual
            return False
        if self.kind == "begins_with":
            return isinstance(actual, str) and isinstance(operands[0], str) and actual.startswith(operands[0])
        return False


@dataclass
class CompiledFilter:
    """Placeholder-based filter ready to hand to a store."""

    conditions: list[Condition]
    names: dict[str, str]
    values: dict[str, Any]

    @property
    def expression(self) -> str:
        return " AND ".join(condition.render() for condition in self.conditions)

    def matches(self, item: dict[str, Any]) -> bool:
        return all(c.matches(item, self.names, self.values) for c in self.conditions)

    def __repr__(self) -> str:
        return f"CompiledFilter({self.expression!r}, names={self.names}, values={self.values})"


@dataclass
class CompiledProjection:
    """Projection expression with its own name placeholders."""

    attributes: list[str]
    names: dict[str, str]

    @property
    def expression(self) -> str:
        return ", ".join(self.names)

    def apply(self, item: dict[str, Any]) -> dict[str, Any]:
        return {k: v for k, v in item.items() if k in self.attributes}


class FilterCompiler:
    """
    Compile structural filters into CompiledFilter objects.

    A structural filter maps field names to either a literal (compared with
    the default operator) or an operator mapping such as {"gte": 18}.
    Literal lists and tuples are compared with "in".

    Rules for edge values:
        - None means "attribute is absent"; {"ne": None} means "present"
        - UNSET values are dropped
        - "in" with an empty list matches nothing
        - "not_in" with an empty list adds no condition
        - a filter with no conditions compiles to None

    Args:
        storage_name: Maps field names to stored attribute names
    """

    def __init__(self, storage_name: Optional[Callable[[str], str]] = None):
        self.storage_name = storage_name or (lambda name: name)

    def compile(
        self,
        filters: Optional[dict[str, Any]],
        default_operator: str = "eq",
    ) -> Optional[CompiledFilter]:
        default_operator = normalize_operator(default_operator)
        compiled = CompiledFilter(conditions=[], names={}, values={})
        self._compile_into(compiled, filters or {}, default_operator)
        if not compiled.conditions:
            return None
        return compiled

    def _compile_into(self, compiled: CompiledFilter, filters: dict[str, Any], default_operator: str) -> None:
        for field_name, spec in filters.items():
            if spec is UNSET:
                continue
            if field_name in _AND_KEYS:
                for nested in _as_filter_list(spec):
                    self._compile_into(compiled, nested, default_operator)
                continue

            attribute = self.storage_name(field_name)
            if isinstance(spec, dict):
                for operator, value in spec.items():
                    if value is UNSET:
                        continue
                    self._add(compiled, attribute, normalize_operator(operator), value)
            elif isinstance(spec, (list, tuple, set, frozenset)) and default_operator == "eq":
                self._add(compiled, attribute, "in", spec)
            else:
                self._add(compiled, attribute, default_operator, spec)

    def _add(self, compiled: CompiledFilter, attribute: str, operator: str, value: Any) -> None:
        if operator in ("in", "not_in"):
            candidates = _as_candidates(value)
            if not candidates:
                if operator == "in":
                    compiled.conditions.append(Condition("never", self._name(compiled, attribute)))
                return
            placeholders = [self._value(compiled, candidate) for candidate in candidates]
            compiled.conditions.append(Condition(operator, self._name(compiled, attribute), placeholders))
            return

        if value is None:
            if operator == "eq":
                compiled.conditions.append(Condition("not_exists", self._name(compiled, attribute)))
                return
            if operator == "ne":
                compiled.conditions.append(Condition("exists", self._name(compiled, attribute)))
                return
            raise QueryError(f"Operator '{operator}' cannot be used with None")

        compiled.conditions.append(
            Condition(operator, self._name(compiled, attribute), [self._value(compiled, value)])
        )

    @staticmethod
    def _name(compiled: CompiledFilter, attribute: str) -> str:
        for placeholder, name in compiled.names.items():
            if name == attribute:
                return placeholder
        placeholder = f"#n{len(compiled.names)}"
        compiled.names[placeholder] = attribute
        return placeholder

    @staticmethod
    def _value(compiled: CompiledFilter, value: Any) -> str:
        placeholder = f":v{len(compiled.values)}"
        compiled.values[placeholder] = value
        return placeholder


def compile_projection(
    attributes: Optional[Iterable[str]],
    storage_name: Optional[Callable[[str], str]] = None,
) -> Optional[CompiledProjection]:
    """
    Compile a projection list.

    An empty or missing list means "no projection", never "no attributes".
    """
    if not attributes:
        return None
    to_storage = storage_name or (lambda name: name)
    stored: list[str] = []
    for attribute in attributes:
        name = to_storage(attribute)
        if name not in stored:
            stored.append(name)
    if not stored:
        return None
    names = {f"#p{index}": name for index, name in enumerate(stored)}
    return CompiledProjection(attributes=stored, names=names)


def _as_candidates(value: Any) -> list[Any]:
    if isinstance(value, (list, tuple, set, frozenset)):
        return [v for v in value if v is not UNSET]
    return [value]


def _as_filter_list(spec: Any) -> list[dict[str, Any]]:
    if isinstance(spec, dict):
        return [spec]
    if isinstance(spec, (list, tuple)) and all(isinstance(s, dict) for s in spec):
        return list(spec)
    raise QueryError("'and' expects a filter mapping or a list of filter mappings")

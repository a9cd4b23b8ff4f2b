"""
Hook decorators for model lifecycle.

Hooks can be plain or async methods; async ones are awaited.
"""

import inspect
from typing import Callable, Any, TypeVar

F = TypeVar('F', bound=Callable[..., Any])


def before_save(func: F) -> F:
    """
    Decorator to mark a method as a before_save hook.

    Called before the record is written, after timestamps are stamped and
    before lazy validators run, so a hook may still fix up field values.

    Example:
        >>> class Slugged:
        ...     @before_save
        ...     def set_slug(self):
        ...         self.slug = self.title.lower().replace(" ", "-")
    """
    setattr(func, '_is_before_save_hook', True)  # type: ignore[attr-defined]
    return func


def after_save(func: F) -> F:
    """
    Decorator to mark a method as an after_save hook.

    Called after the record is written. Inside a transaction it runs once the
    transaction commits.
    """
    setattr(func, '_is_after_save_hook', True)  # type: ignore[attr-defined]
    return func


def after_load(func: F) -> F:
    """
    Decorator to mark a method as an after_load hook.

    Called after a record is materialized from a store item.
    """
    setattr(func, '_is_after_load_hook', True)  # type: ignore[attr-defined]
    return func


async def run_hooks(hooks: list[Callable[..., Any]], instance: Any) -> None:
    """Call each hook with the instance, awaiting coroutine results."""
    for hook in hooks:
        result = hook(instance)
        if inspect.isawaitable(result):
            await result

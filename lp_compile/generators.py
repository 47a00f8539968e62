"""
Generator enumeration and binding contexts.

A generator list such as [i <- 1..3, j <- names, i != 2] is enumerated
as a nested loop in declaration order. Each step yields a fresh
EvalContext; nothing is shared between sibling steps.
"""

from collections.abc import Mapping
from typing import Any, Iterable, Iterator

from lp_compile.constants import (
    EvalContext,
    evaluate,
    is_constant,
    normalize_value,
)
from lp_compile.errors import DomainError, NonNumericError
from lp_compile.expr import Filter, Generator, GeneratorItem, Node, as_generator


class BindingSpace:
    """
    Lazy, restartable cross-product of generator domains.

    Iterating twice enumerates twice; domains written as expressions are
    re-evaluated for every outer binding, so later generators may depend
    on earlier ones. Filters are checked as soon as they are reached.
    """

    def __init__(self, generators: Iterable[Any], context: EvalContext):
        self.generators: tuple[GeneratorItem, ...] = tuple(
            as_generator(g) for g in generators
        )
        self.context = context

    def __iter__(self) -> Iterator[EvalContext]:
        return self._enumerate(0, self.context)

    def _enumerate(
        self, position: int, context: EvalContext
    ) -> Iterator[EvalContext]:
        if position == len(self.generators):
            yield context
            return

        item = self.generators[position]
        if isinstance(item, Filter):
            if check_filter(item, context):
                yield from self._enumerate(position + 1, context)
            return

        for value in resolve_domain(item, context):
            yield from self._enumerate(
                position + 1, context.bind(item.name, value)
            )

    @property
    def names(self) -> tuple[str, ...]:
        """Bound names in declaration order (filters excluded)."""
        return tuple(
            g.name for g in self.generators if isinstance(g, Generator)
        )


def resolve_domain(generator: Generator, context: EvalContext) -> list:
    """
    Reduce a generator's domain to an ordered list of values.

    Raises:
        DomainError: If the domain is not a finite ordered sequence
    """
    domain = generator.domain
    if isinstance(domain, Node):
        if not is_constant(domain):
            raise DomainError(
                f"Domain of '{generator.name}' references decision "
                f"variables: {domain!r}"
            )
        domain = evaluate(domain, context)
    return as_sequence(domain, generator.name)


def as_sequence(domain: Any, name: str = "?") -> list:
    """Convert a domain value to a list, rejecting unordered values."""
    return [normalize_value(v) for v in _as_list(domain, name)]


def _as_list(domain: Any, name: str) -> list:
    if isinstance(domain, range):
        return list(domain)
    if isinstance(domain, (list, tuple)):
        return list(domain)
    if isinstance(domain, Mapping):
        return list(domain.keys())
    if isinstance(domain, (str, bytes)):
        raise DomainError(
            f"Domain of '{name}' is a string; wrap it in a list"
        )
    if isinstance(domain, (set, frozenset)):
        raise DomainError(f"Domain of '{name}' is unordered: {domain!r}")
    if hasattr(domain, "tolist") and getattr(domain, "ndim", 0) == 1:
        return domain.tolist()
    raise DomainError(
        f"Domain of '{name}' is not a finite ordered sequence: {domain!r}"
    )


def check_filter(item: Filter, context: EvalContext) -> bool:
    """Evaluate a filter under a partial binding; it must yield a bool."""
    try:
        value = evaluate(item.expr, context)
    except NonNumericError as e:
        raise DomainError(f"Filter {item.expr!r} failed: {e}")
    if not isinstance(value, bool):
        raise DomainError(
            f"Filter {item.expr!r} must evaluate to a boolean, got {value!r}"
        )
    return value


def index_values(
    context: EvalContext, generators: Iterable[Any]
) -> tuple:
    """Current values of the bound names, in declaration order."""
    values = []
    for item in generators:
        item = as_generator(item)
        if isinstance(item, Generator):
            values.append(context.bindings[item.name])
    return tuple(values)

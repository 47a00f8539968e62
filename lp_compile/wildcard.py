"""
Wildcard expansion.

This module handles:
1. Finding the free wildcards of an expression (those not already scoped
   by an inner sum or aggregate)
2. Assigning each wildcard a role: its ordinal among the wildcards of its
   carrier, a variable reference's index list or a full lookup chain
3. Determining each role's domain from the registered index tuples of the
   variable families carrying it, or from a container's keys
4. Producing one concrete instance tree per combination of role values

Wildcards sharing a role iterate together, so in qty[_] * foods[_].kcal
both wildcards take the same food at each step. Distinct roles form a
cross product in role order.
"""

import dataclasses
from collections.abc import Mapping
from typing import Any, Iterator, Optional

from lp_compile.constants import EvalContext, is_indexable, evaluate
from lp_compile.errors import AmbiguousWildcardError
from lp_compile.expr import (
    NARY_OPERATORS,
    GeneratorSum,
    Literal,
    Lookup,
    Node,
    PatternInstanceSet,
    Sum,
    VariableRef,
    Wildcard,
)
from lp_compile.polynomial import resolve_index

_ANY = object()


def is_scoped(node: Node) -> bool:
    """True for nodes that bind the wildcards inside them."""
    if isinstance(node, (Sum, GeneratorSum, PatternInstanceSet)):
        return True
    return isinstance(node, NARY_OPERATORS) and len(node.args) == 1


def contains_wildcard(node: Node) -> bool:
    """True if a free wildcard occurs in the tree."""
    if isinstance(node, Wildcard):
        return True
    if is_scoped(node):
        return False
    return any(contains_wildcard(child) for child in node.children())


def expand_wildcards(
    node: Node, context: EvalContext, registry: Any
) -> list[Node]:
    """
    Expand the free wildcards of a tree into concrete instance trees.

    Args:
        node: Expression containing free wildcards
        context: Bindings and parameters in effect
        registry: Anything with has_family, index_tuples and get_variable

    Returns:
        One tree per combination, in role order; combinations naming an
        undeclared variable instance are skipped

    Raises:
        AmbiguousWildcardError: If a role's domain cannot be determined
    """
    return WildcardExpander(context, registry).expand(node)


class WildcardExpander:
    def __init__(self, context: EvalContext, registry: Any):
        self.context = context
        self.registry = registry

    def expand(self, node: Node) -> list[Node]:
        carriers: list[Node] = []
        _collect_carriers(node, carriers)
        if not carriers:
            return [node]

        role_count = max(_wildcard_count(c) for c in carriers)
        refs = [c for c in carriers if isinstance(c, VariableRef)]
        instances = []
        for values in self._assignments(carriers, role_count, ()):
            if all(self._is_declared(substitute(r, values)) for r in refs):
                instances.append(substitute(node, values))
        return instances

    def _assignments(
        self, carriers: list[Node], role_count: int, assigned: tuple
    ) -> Iterator[tuple]:
        if len(assigned) == role_count:
            yield assigned
            return
        for value in self.role_domain(len(assigned), carriers, assigned):
            yield from self._assignments(
                carriers, role_count, assigned + (value,)
            )

    def role_domain(
        self, role: int, carriers: list[Node], assigned: tuple = ()
    ) -> list:
        """Values of one role given the values of the roles before it."""
        refs = [
            c for c in carriers
            if isinstance(c, VariableRef) and _wildcard_count(c) > role
        ]
        if refs:
            domains = [self._family_domain(r, role, assigned) for r in refs]
        else:
            domains = [
                self._container_domain(c, role, assigned)
                for c in carriers
                if _wildcard_count(c) > role
            ]
        return _intersect(domains)

    def _family_domain(
        self, ref: VariableRef, role: int, assigned: tuple
    ) -> list:
        if self.registry is None or not self.registry.has_family(ref.name):
            raise AmbiguousWildcardError(
                f"Cannot determine the domain of the wildcard in {ref!r}: "
                f"'{ref.name}' has no declared instances"
            )

        pattern = []
        position = None
        ordinal = 0
        for i, index in enumerate(ref.indices):
            if isinstance(index, Wildcard):
                if ordinal < role:
                    pattern.append(assigned[ordinal])
                else:
                    pattern.append(_ANY)
                    if ordinal == role:
                        position = i
                ordinal += 1
            else:
                pattern.append(resolve_index(ref, index, self.context))

        values = {}
        for index in self.registry.index_tuples(ref.name):
            if len(index) != len(pattern):
                continue
            if all(p is _ANY or p == v for p, v in zip(pattern, index)):
                values.setdefault(index[position], None)
        return list(values)

    def _container_domain(self, chain: Lookup, role: int, assigned: tuple) -> list:
        step = _wildcard_steps(chain)[role]
        container = evaluate(substitute(step.container, assigned), self.context)
        if isinstance(container, Mapping):
            return list(container.keys())
        if is_indexable(container):
            return list(range(len(container)))
        raise AmbiguousWildcardError(
            f"Cannot determine the domain of the wildcard in {chain!r}: "
            f"{step.container!r} is not a container"
        )

    def _is_declared(self, ref: VariableRef) -> bool:
        index = tuple(resolve_index(ref, i, self.context) for i in ref.indices)
        return self.registry.get_variable((ref.name, index)) is not None


def substitute(node: Node, values: tuple) -> Node:
    """Replace the k-th wildcard of every carrier with values[k]."""
    if is_scoped(node):
        return node

    if isinstance(node, VariableRef):
        remaining = iter(values)
        return VariableRef(
            node.name,
            tuple(
                Literal(next(remaining)) if isinstance(i, Wildcard)
                else substitute(i, values)
                for i in node.indices
            ),
        )

    if isinstance(node, Lookup):
        steps, root = _chain(node)
        current = substitute(root, values)
        ordinal = 0
        for step in steps:
            if isinstance(step.key, Wildcard):
                key = Literal(values[ordinal])
                ordinal += 1
            else:
                key = substitute(step.key, values)
            current = Lookup(current, key, step.dot)
        return current

    if isinstance(node, Wildcard):
        raise AmbiguousWildcardError(
            "Wildcards are only valid as variable indices or lookup keys"
        )

    return _map_children(node, lambda child: substitute(child, values))


def _collect_carriers(node: Node, carriers: list[Node]):
    if is_scoped(node):
        return

    if isinstance(node, Wildcard):
        raise AmbiguousWildcardError(
            "Wildcards are only valid as variable indices or lookup keys"
        )

    if isinstance(node, VariableRef):
        if any(isinstance(i, Wildcard) for i in node.indices):
            carriers.append(node)
        for index in node.indices:
            if not isinstance(index, Wildcard):
                _collect_carriers(index, carriers)
        return

    if isinstance(node, Lookup):
        steps, root = _chain(node)
        if any(isinstance(s.key, Wildcard) for s in steps):
            carriers.append(node)
        _collect_carriers(root, carriers)
        for step in steps:
            if not isinstance(step.key, Wildcard):
                _collect_carriers(step.key, carriers)
        return

    for child in node.children():
        _collect_carriers(child, carriers)


def _chain(node: Lookup) -> tuple[list[Lookup], Node]:
    """Steps of a lookup chain, innermost first, and its root container."""
    steps = []
    while isinstance(node, Lookup):
        steps.append(node)
        node = node.container
    steps.reverse()
    return steps, node


def _wildcard_steps(chain: Lookup) -> list[Lookup]:
    steps, _ = _chain(chain)
    return [s for s in steps if isinstance(s.key, Wildcard)]


def _wildcard_count(carrier: Node) -> int:
    if isinstance(carrier, VariableRef):
        return sum(isinstance(i, Wildcard) for i in carrier.indices)
    return len(_wildcard_steps(carrier))


def _intersect(domains: list[list]) -> list:
    """Values present in every domain, in the first domain's order."""
    first, rest = domains[0], domains[1:]
    return [v for v in first if all(v in other for other in rest)]


def _map_children(node: Node, fn) -> Node:
    changes: dict[str, Any] = {}
    for f in dataclasses.fields(node):
        value = getattr(node, f.name)
        if isinstance(value, Node):
            changes[f.name] = fn(value)
        elif isinstance(value, tuple) and any(isinstance(v, Node) for v in value):
            changes[f.name] = tuple(
                fn(v) if isinstance(v, Node) else v for v in value
            )
    if not changes:
        return node
    return dataclasses.replace(node, **changes)


def pattern_of(node: Node) -> Optional[Node]:
    """The wildcarded pattern of a single-argument aggregate, if any."""
    if not isinstance(node, NARY_OPERATORS) or len(node.args) != 1:
        return None
    arg = node.args[0]
    if isinstance(arg, PatternInstanceSet):
        return arg.expr
    if contains_wildcard(arg):
        return arg
    return None

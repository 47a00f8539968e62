"""
Constant evaluation for expression trees.

This module handles:
1. The explicit evaluation context (generator bindings + model parameters)
2. Resolving bare names: bound generator first, then model parameter
3. Nested container lookups (bracket and dot forms)
4. Folding constant subtrees down to Python values

A name that is neither bound nor a parameter is an error. It is never
returned as its own text, except as a key inside a container lookup.
"""

import math
import numbers
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from lp_compile.errors import (
    AmbiguousWildcardError,
    DivisionByZeroError,
    DomainError,
    KeyNotFoundError,
    NonNumericError,
    UnboundSymbolError,
)
from lp_compile.expr import (
    Abs,
    And,
    BinaryOp,
    Comparison,
    GeneratorSum,
    IfThenElse,
    Literal,
    Lookup,
    Max,
    Min,
    Negate,
    Node,
    Or,
    PatternInstanceSet,
    PiecewiseLinear,
    Range,
    Sum,
    SymbolicKey,
    VariableRef,
    Wildcard,
    walk,
)


@dataclass(frozen=True)
class EvalContext:
    """
    Everything a constant evaluation may read.

    bindings maps generator names to their current values and is scoped
    to one enumeration step; parameters is the read-only model data.
    """

    bindings: Mapping = field(default_factory=dict)
    parameters: Mapping = field(default_factory=dict)

    def bind(self, name: str, value: Any) -> "EvalContext":
        """Return a new context with one more binding."""
        bindings = dict(self.bindings)
        bindings[name] = value
        return EvalContext(bindings, self.parameters)

    def is_bound(self, name: str) -> bool:
        return name in self.bindings


def normalize_value(value: Any) -> Any:
    """Turn numpy scalars into plain Python values."""
    if isinstance(value, (str, bytes)):
        return value
    if hasattr(value, "item") and getattr(value, "ndim", None) == 0:
        return value.item()
    return value


def resolve_symbol(name: str, context: EvalContext) -> Any:
    """
    Resolve a bare name used as a value.

    Bound generator names win over parameters of the same name.

    Raises:
        UnboundSymbolError: If the name is neither bound nor a parameter
    """
    if name in context.bindings:
        return normalize_value(context.bindings[name])
    if name in context.parameters:
        return normalize_value(context.parameters[name])
    raise UnboundSymbolError(name, tuple(context.bindings))


def resolve_key(key: Node, context: EvalContext, dot: bool = False) -> Any:
    """
    Resolve the key of a container lookup.

    A bare name key resolves to its bound value when one exists, otherwise
    to its own text as a literal key. Dot keys are always literal.
    """
    if isinstance(key, Wildcard):
        raise AmbiguousWildcardError(
            "Wildcard lookup key must be expanded before evaluation"
        )
    if isinstance(key, SymbolicKey):
        if not dot and key.name in context.bindings:
            return normalize_value(context.bindings[key.name])
        return key.name
    return evaluate(key, context)


def lookup(container: Any, key: Any, dot: bool = False) -> Any:
    """
    Index into a constant container.

    Mappings are indexed by key (a number key also matches its text form,
    as produced by JSON data); sequences and arrays by non-negative
    integer position; other objects by attribute with the dot form.

    Raises:
        KeyNotFoundError: If the key is absent
    """
    if isinstance(container, Mapping):
        if key in container:
            return normalize_value(container[key])
        if not isinstance(key, str) and str(key) in container:
            return normalize_value(container[str(key)])
        raise KeyNotFoundError(key, f"mapping with keys {list(container)[:10]}")

    if is_indexable(container):
        if isinstance(key, bool) or not isinstance(key, numbers.Integral):
            raise KeyNotFoundError(key, "sequence (integer positions only)")
        if not 0 <= key < len(container):
            raise KeyNotFoundError(key, f"sequence of length {len(container)}")
        return normalize_value(container[key])

    if dot and isinstance(key, str) and hasattr(container, key):
        return normalize_value(getattr(container, key))

    raise KeyNotFoundError(key, f"non-container value {container!r}")


def is_indexable(value: Any) -> bool:
    if isinstance(value, (str, bytes)):
        return False
    if isinstance(value, Sequence):
        return True
    # numpy arrays
    return hasattr(value, "shape") and hasattr(value, "__getitem__")


def is_constant(node: Node) -> bool:
    """True if no decision variable or wildcard appears in the tree."""
    return not any(isinstance(n, (VariableRef, Wildcard)) for n in walk(node))


def reduce_constant(node: Node, context: EvalContext) -> Any:
    """Evaluate a constant subtree; return any other node unchanged."""
    if is_constant(node):
        return evaluate(node, context)
    return node


def evaluate_number(node: Node, context: EvalContext) -> float:
    """Evaluate a constant subtree that must produce a number."""
    value = evaluate(node, context)
    return _require_number(value, node)


def _require_number(value: Any, node: Any) -> Any:
    if isinstance(value, numbers.Number) and not isinstance(value, complex):
        return value
    raise NonNumericError(
        f"Expected a number from {node!r}, got {value!r} "
        f"({type(value).__name__})"
    )


def evaluate(node: Node, context: EvalContext) -> Any:
    """
    Evaluate a constant expression tree to a Python value.

    Args:
        node: A tree without decision variables or wildcards
        context: Bindings and parameters to evaluate against

    Returns:
        A number, string, boolean, list or container value
    """
    if isinstance(node, Literal):
        return normalize_value(node.value)

    if isinstance(node, SymbolicKey):
        return resolve_symbol(node.name, context)

    if isinstance(node, Lookup):
        container = evaluate(node.container, context)
        key = resolve_key(node.key, context, dot=node.dot)
        return lookup(container, key, dot=node.dot)

    if isinstance(node, BinaryOp):
        left = _require_number(evaluate(node.left, context), node.left)
        right = _require_number(evaluate(node.right, context), node.right)
        if node.op == "+":
            return left + right
        if node.op == "-":
            return left - right
        if node.op == "*":
            return left * right
        if right == 0:
            raise DivisionByZeroError(f"Division by zero in {node!r}")
        return left / right

    if isinstance(node, Negate):
        return -_require_number(evaluate(node.expr, context), node.expr)

    if isinstance(node, Comparison):
        return _compare(
            node.op, evaluate(node.left, context), evaluate(node.right, context)
        )

    if isinstance(node, And):
        return all(_truth(evaluate(a, context), a) for a in node.args)

    if isinstance(node, Or):
        return any(_truth(evaluate(a, context), a) for a in node.args)

    if isinstance(node, IfThenElse):
        if _truth(evaluate(node.cond, context), node.cond):
            return evaluate(node.then, context)
        return evaluate(node.else_, context)

    if isinstance(node, Abs):
        return abs(evaluate_number(node.expr, context))

    if isinstance(node, (Max, Min)):
        values = [evaluate_number(a, context) for a in node.args]
        if not values:
            raise DomainError(f"{type(node).__name__} of no arguments")
        return max(values) if isinstance(node, Max) else min(values)

    if isinstance(node, Sum):
        return sum(evaluate_number(a, context) for a in node.args)

    if isinstance(node, GeneratorSum):
        from lp_compile.generators import BindingSpace

        return sum(
            evaluate_number(node.body, inner)
            for inner in BindingSpace(node.generators, context)
        )

    if isinstance(node, Range):
        return evaluate_range(node, context)

    if isinstance(node, PiecewiseLinear):
        return _evaluate_piecewise(node, evaluate_number(node.expr, context))

    if isinstance(node, PatternInstanceSet):
        raise AmbiguousWildcardError(
            f"Pattern {node!r} must be expanded before evaluation"
        )

    if isinstance(node, Wildcard):
        raise AmbiguousWildcardError("Wildcard outside an expandable context")

    raise TypeError(f"Cannot evaluate {node!r} as a constant")


def evaluate_range(node: Range, context: EvalContext) -> list[int]:
    """Evaluate start..stop (inclusive) to a list of integers."""
    start = evaluate_number(node.start, context)
    stop = evaluate_number(node.stop, context)
    if not (_is_integral(start) and _is_integral(stop)):
        raise DomainError(f"Range ends must be integers, got {start}..{stop}")
    return list(range(int(start), int(stop) + 1))


def _is_integral(value: Any) -> bool:
    if isinstance(value, numbers.Integral):
        return True
    return isinstance(value, float) and math.isfinite(value) and value.is_integer()


def _compare(op: str, left: Any, right: Any) -> bool:
    try:
        if op == "==":
            return left == right
        if op == "!=":
            return left != right
        if op == "<=":
            return left <= right
        if op == ">=":
            return left >= right
        if op == "<":
            return left < right
        return left > right
    except TypeError:
        raise NonNumericError(f"Cannot compare {left!r} {op} {right!r}")


def _truth(value: Any, node: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, numbers.Number) and value in (0, 1):
        return bool(value)
    raise NonNumericError(f"Expected a boolean from {node!r}, got {value!r}")


def _evaluate_piecewise(node: PiecewiseLinear, x: float) -> float:
    points = node.breakpoints
    for k in range(len(points) - 1):
        if points[k] <= x <= points[k + 1]:
            return node.slopes[k] * x + node.intercepts[k]
    raise DomainError(
        f"{x} lies outside the piecewise domain [{points[0]}, {points[-1]}]"
    )

"""
Canonical linear expressions and the builder that folds trees into them.

A Polynomial maps variable instances, identified by (family, index_tuple),
to coefficients, plus one constant term. The builder only understands
linear structure; anything else must be rewritten before it gets here.
"""

import math
import numbers
from typing import Any, Callable, Mapping, Optional

from lp_compile.constants import (
    EvalContext,
    evaluate,
    is_constant,
    resolve_symbol,
)
from lp_compile.errors import (
    AmbiguousWildcardError,
    DivisionByZeroError,
    DomainError,
    NonLinearError,
    NonNumericError,
    UndefinedVariableError,
)
from lp_compile.expr import (
    BinaryOp,
    Negate,
    Node,
    Sum,
    SymbolicKey,
    VariableRef,
    Wildcard,
)

VarKey = tuple[str, tuple]


class Polynomial:
    """A linear combination of variable instances plus a constant."""

    __slots__ = ("terms", "constant")

    def __init__(
        self,
        terms: Optional[Mapping[VarKey, float]] = None,
        constant: float = 0,
    ):
        self.terms: dict[VarKey, float] = {
            key: coef for key, coef in (terms or {}).items() if coef != 0
        }
        self.constant = constant

    @classmethod
    def const(cls, value: float) -> "Polynomial":
        return cls({}, value)

    @classmethod
    def variable(cls, key: VarKey, coefficient: float = 1) -> "Polynomial":
        return cls({key: coefficient})

    def is_constant(self) -> bool:
        return not self.terms

    def variables(self) -> list[VarKey]:
        return list(self.terms)

    def coefficient(self, key: VarKey) -> float:
        return self.terms.get(key, 0)

    def linear_part(self) -> "Polynomial":
        """The same polynomial without its constant term."""
        return Polynomial(self.terms, 0)

    def scale(self, factor: float) -> "Polynomial":
        return Polynomial(
            {key: coef * factor for key, coef in self.terms.items()},
            self.constant * factor,
        )

    def evaluate(self, assignment: Mapping[VarKey, float]) -> float:
        """Value of the polynomial for the given variable values."""
        return self.constant + sum(
            coef * assignment[key] for key, coef in self.terms.items()
        )

    def __add__(self, other: Any) -> "Polynomial":
        other = as_polynomial(other)
        terms = dict(self.terms)
        for key, coef in other.terms.items():
            terms[key] = terms.get(key, 0) + coef
        return Polynomial(terms, self.constant + other.constant)

    __radd__ = __add__

    def __neg__(self) -> "Polynomial":
        return self.scale(-1)

    def __sub__(self, other: Any) -> "Polynomial":
        return self + (-as_polynomial(other))

    def __rsub__(self, other: Any) -> "Polynomial":
        return as_polynomial(other) - self

    def __mul__(self, other: Any) -> "Polynomial":
        return multiply(self, as_polynomial(other))

    __rmul__ = __mul__

    def __truediv__(self, other: Any) -> "Polynomial":
        return divide(self, as_polynomial(other))

    def __eq__(self, other: Any) -> bool:
        if isinstance(other, numbers.Number):
            other = Polynomial.const(other)
        if not isinstance(other, Polynomial):
            return NotImplemented
        return self.terms == other.terms and self.constant == other.constant

    def __repr__(self) -> str:
        parts = [
            f"{coef}*{format_key(key)}" for key, coef in self.terms.items()
        ]
        if self.constant or not parts:
            parts.append(str(self.constant))
        return "Polynomial(" + " + ".join(parts) + ")"


def as_polynomial(value: Any) -> Polynomial:
    if isinstance(value, Polynomial):
        return value
    if isinstance(value, numbers.Number) and not isinstance(value, bool):
        return Polynomial.const(value)
    raise NonNumericError(f"Cannot use {value!r} in a linear expression")


def multiply(left: Polynomial, right: Polynomial) -> Polynomial:
    """Product of two polynomials, at least one of them constant."""
    if left.is_constant():
        return right.scale(left.constant)
    if right.is_constant():
        return left.scale(right.constant)
    raise NonLinearError(
        f"Product of two non-constant expressions: {left!r} * {right!r}"
    )


def divide(left: Polynomial, right: Polynomial) -> Polynomial:
    """Quotient by a constant polynomial."""
    if not right.is_constant():
        raise NonLinearError(f"Division by a non-constant expression: {right!r}")
    if right.constant == 0:
        raise DivisionByZeroError(f"Division of {left!r} by zero")
    return left.scale(1 / right.constant)


def format_key(key: VarKey) -> str:
    """Readable name of a variable instance, e.g. x(1,A)."""
    family, index = key
    if not index:
        return family
    return f"{family}({','.join(str(v) for v in index)})"


def polynomial_bounds(
    poly: Polynomial, variable_bounds: Callable[[VarKey], tuple[float, float]]
) -> tuple[float, float]:
    """
    Interval of values a polynomial can take given per-variable bounds.

    Infinite bounds propagate; a zero coefficient never multiplies one.
    """
    lower = upper = poly.constant
    for key, coef in poly.terms.items():
        lo, hi = variable_bounds(key)
        if coef > 0:
            lower += coef * lo
            upper += coef * hi
        else:
            lower += coef * hi
            upper += coef * lo
    if math.isnan(lower) or math.isnan(upper):
        return (-math.inf, math.inf)
    return (lower, upper)


Extension = Callable[[Node, "PolynomialBuilder"], Optional[Polynomial]]


class PolynomialBuilder:
    """
    Fold a concrete expression tree into a Polynomial.

    Usage:
        builder = PolynomialBuilder(context, registry)
        poly = builder.build(var("x", 1) * 3 + 2)

    The optional extension is consulted first for every node; it handles
    node kinds this builder does not know (generator sums, wildcards,
    nonlinear operators) and returns None for everything else.
    """

    def __init__(
        self,
        context: EvalContext,
        registry: Any = None,
        extension: Optional[Extension] = None,
    ):
        self.context = context
        self.registry = registry
        self.extension = extension

    def with_context(self, context: EvalContext) -> "PolynomialBuilder":
        """Same registry and extension, different bindings."""
        return PolynomialBuilder(context, self.registry, self.extension)

    def build(self, node: Node) -> Polynomial:
        if self.extension is not None:
            result = self.extension(node, self)
            if result is not None:
                return result

        if is_constant(node):
            return as_polynomial(evaluate(node, self.context))

        if isinstance(node, VariableRef):
            key = self.resolve_variable(node)
            return Polynomial.variable(key)

        if isinstance(node, BinaryOp):
            left = self.build(node.left)
            right = self.build(node.right)
            if node.op == "+":
                return left + right
            if node.op == "-":
                return left - right
            if node.op == "*":
                return multiply(left, right)
            if right.is_constant() and right.constant == 0:
                raise DivisionByZeroError(f"Division by zero in {node!r}")
            return divide(left, right)

        if isinstance(node, Negate):
            return -self.build(node.expr)

        if isinstance(node, Sum):
            total = Polynomial()
            for arg in node.args:
                total = total + self.build(arg)
            return total

        raise NonLinearError(
            f"{type(node).__name__} cannot be folded into a linear "
            f"expression: {node!r}"
        )

    def resolve_variable(self, ref: VariableRef) -> VarKey:
        """
        Resolve every index of a reference to a concrete value.

        Raises:
            UnboundSymbolError: If a bare-name index is not bound
            UndefinedVariableError: If the instance was never declared
        """
        index = tuple(resolve_index(ref, i, self.context) for i in ref.indices)
        key = (ref.name, index)

        if self.registry is not None and self.registry.get_variable(key) is None:
            if not self.registry.has_family(ref.name):
                raise UndefinedVariableError(
                    f"Variable '{ref.name}' has not been declared"
                )
            raise UndefinedVariableError(
                f"Variable {format_key(key)} is not a declared instance "
                f"of '{ref.name}'"
            )
        return key


def resolve_index(ref: VariableRef, index: Node, context: EvalContext) -> Any:
    """Concrete value of one index of a variable reference."""
    if isinstance(index, Wildcard):
        raise AmbiguousWildcardError(
            f"Wildcard in {ref!r} outside a sum or aggregate"
        )
    if isinstance(index, SymbolicKey):
        return resolve_symbol(index.name, context)
    if not is_constant(index):
        raise DomainError(f"Index {index!r} of {ref.name} is not constant")
    return evaluate(index, context)

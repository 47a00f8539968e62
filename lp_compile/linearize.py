"""
Linearization of nonlinear operators.

Each operator is replaced by auxiliary variables and linear constraints
that are equivalent over the operands' declared bounds. Big-M constants
are derived from those bounds (times CompilerConfig.big_m_slack), so an
operand without finite bounds cannot be linearized exactly.

Auxiliary families are named <prefix>_<operator> and indexed by a
per-model counter: aux_max(1), aux_max_sel(1,2), ...
"""

import logging
import math
from typing import Any, Optional, Sequence

from lp_compile.config import DEFAULT_CONFIG, CompilerConfig
from lp_compile.errors import DomainError, NonLinearError, UnboundedLinearizationError
from lp_compile.model import VariableKind
from lp_compile.polynomial import Polynomial, VarKey, polynomial_bounds

logger = logging.getLogger(__name__)


class BoundsAnalyzer:
    """Interval bounds of polynomials from declared variable bounds."""

    def __init__(self, registry: Any):
        self.registry = registry

    def variable_bounds(self, key: VarKey) -> tuple[float, float]:
        instance = self.registry.get_variable(key)
        if instance is None:
            return (-math.inf, math.inf)
        return instance.bounds()

    def bounds(self, poly: Polynomial) -> tuple[float, float]:
        return polynomial_bounds(poly, self.variable_bounds)

    def finite_bounds(self, poly: Polynomial, operation: str) -> tuple[float, float]:
        """
        Bounds that must be finite for big-M sizing.

        Raises:
            UnboundedLinearizationError: If either bound is infinite
        """
        lower, upper = self.bounds(poly)
        if not (math.isfinite(lower) and math.isfinite(upper)):
            raise UnboundedLinearizationError(
                f"Cannot linearize {operation}: operand {poly!r} has bounds "
                f"[{lower}, {upper}]; declare finite bounds on its variables"
            )
        return lower, upper

    def is_boolean(self, poly: Polynomial) -> bool:
        """True if poly only takes the values 0 and 1."""
        lower, upper = self.bounds(poly)
        if lower < 0 or upper > 1:
            return False
        if float(poly.constant) != int(poly.constant):
            return False
        for key, coef in poly.terms.items():
            instance = self.registry.get_variable(key)
            if instance is None or instance.kind is VariableKind.CONTINUOUS:
                return False
            if float(coef) != int(coef):
                return False
        return True


class Linearizer:
    """
    Rewrite nonlinear operators through a ModelAssembler.

    Every method returns the Polynomial that replaces the operator and
    declares its auxiliaries inside the assembler's current transaction.
    """

    def __init__(self, assembler: Any, config: Optional[CompilerConfig] = None):
        self.assembler = assembler
        self.config = config or getattr(assembler, "config", DEFAULT_CONFIG)
        self.analyzer = BoundsAnalyzer(assembler)

    def abs_(self, expr: Polynomial) -> Polynomial:
        """|e| as a >= e, a >= -e with a >= 0."""
        if expr.is_constant():
            return Polynomial.const(abs(expr.constant))
        lower, upper = self.analyzer.bounds(expr)
        if lower >= 0:
            return expr
        if upper <= 0:
            return -expr

        family, n = self._family("abs")
        a = self._variable(family, (n,), VariableKind.CONTINUOUS, (0, None))
        self._constraint(family, n, "pos", a - expr, ">=")
        self._constraint(family, n, "neg", a + expr, ">=")
        return a

    def max_(self, operands: Sequence[Polynomial]) -> Polynomial:
        """z = max(e_1..e_n) with one binary selector per operand."""
        return self._extremum(operands, maximum=True)

    def min_(self, operands: Sequence[Polynomial]) -> Polynomial:
        return self._extremum(operands, maximum=False)

    def _extremum(self, operands: Sequence[Polynomial], maximum: bool) -> Polynomial:
        label = "max" if maximum else "min"
        operands = list(operands)
        if not operands:
            raise DomainError(f"{label} of no operands")
        if len(operands) == 1:
            return operands[0]
        if all(e.is_constant() for e in operands):
            values = [e.constant for e in operands]
            return Polynomial.const(max(values) if maximum else min(values))

        bounds = [self.analyzer.finite_bounds(e, label) for e in operands]
        lowers = [lo for lo, _ in bounds]
        uppers = [hi for _, hi in bounds]
        if maximum:
            z_bounds = (max(lowers), max(uppers))
        else:
            z_bounds = (min(lowers), min(uppers))

        family, n = self._family(label)
        z = self._variable(family, (n,), VariableKind.CONTINUOUS, z_bounds)
        selectors = [
            self._variable(f"{family}_sel", (n, k), VariableKind.BINARY)
            for k in range(1, len(operands) + 1)
        ]
        self._constraint(family, n, "one", sum(selectors, Polynomial()), "==", 1)

        slack = self.config.big_m_slack
        for k, (e, y, (lo, hi)) in enumerate(zip(operands, selectors, bounds), 1):
            if maximum:
                # z >= e_k, and z <= e_k when y_k selects it
                big_m = slack * (z_bounds[1] - lo)
                self._constraint(family, n, f"ge{k}", z - e, ">=")
                self._constraint(family, n, f"sel{k}", z - e + y * big_m, "<=", big_m)
            else:
                big_m = slack * (hi - z_bounds[0])
                self._constraint(family, n, f"le{k}", z - e, "<=")
                self._constraint(family, n, f"sel{k}", z - e - y * big_m, ">=", -big_m)
        return z

    def and_(self, operands: Sequence[Polynomial]) -> Polynomial:
        """Conjunction of 0/1 operands."""
        operands = self._booleans(operands, "and")
        if len(operands) == 1:
            return operands[0]
        family, n = self._family("and")
        z = self._variable(family, (n,), VariableKind.BINARY)
        for k, e in enumerate(operands, 1):
            self._constraint(family, n, f"le{k}", z - e, "<=")
        total = sum(operands, Polynomial())
        self._constraint(family, n, "all", z - total, ">=", 1 - len(operands))
        return z

    def or_(self, operands: Sequence[Polynomial]) -> Polynomial:
        """Disjunction of 0/1 operands."""
        operands = self._booleans(operands, "or")
        if len(operands) == 1:
            return operands[0]
        family, n = self._family("or")
        z = self._variable(family, (n,), VariableKind.BINARY)
        for k, e in enumerate(operands, 1):
            self._constraint(family, n, f"ge{k}", z - e, ">=")
        total = sum(operands, Polynomial())
        self._constraint(family, n, "any", z - total, "<=")
        return z

    def _booleans(self, operands: Sequence[Polynomial], label: str) -> list:
        operands = list(operands)
        if not operands:
            raise DomainError(f"{label} of no operands")
        for e in operands:
            if not self.analyzer.is_boolean(e):
                raise NonLinearError(
                    f"Operands of {label} must be 0/1 valued, got {e!r}"
                )
        return operands

    def if_then_else(
        self, cond: Polynomial, then: Polynomial, else_: Polynomial
    ) -> Polynomial:
        """z = then when cond is 1, else_ when cond is 0."""
        if not self.analyzer.is_boolean(cond):
            raise NonLinearError(
                f"Condition of if-then-else must be 0/1 valued, got {cond!r}"
            )
        if cond.is_constant():
            return then if cond.constant else else_
        if then.is_constant() and else_.is_constant():
            return else_ + cond * (then.constant - else_.constant)

        then_lo, then_hi = self.analyzer.finite_bounds(then, "if-then-else")
        else_lo, else_hi = self.analyzer.finite_bounds(else_, "if-then-else")
        z_lo, z_hi = min(then_lo, else_lo), max(then_hi, else_hi)

        family, n = self._family("if")
        z = self._variable(family, (n,), VariableKind.CONTINUOUS, (z_lo, z_hi))
        slack = self.config.big_m_slack

        # cond = 1 pins z to then, cond = 0 pins z to else_
        m = slack * (z_hi - then_lo)
        self._constraint(family, n, "then_ub", z - then + cond * m, "<=", m)
        m = slack * (then_hi - z_lo)
        self._constraint(family, n, "then_lb", z - then - cond * m, ">=", -m)
        m = slack * (z_hi - else_lo)
        self._constraint(family, n, "else_ub", z - else_ - cond * m, "<=")
        m = slack * (else_hi - z_lo)
        self._constraint(family, n, "else_lb", z - else_ + cond * m, ">=")
        return z

    def piecewise(
        self,
        expr: Polynomial,
        breakpoints: Sequence[float],
        slopes: Sequence[float],
        intercepts: Sequence[float],
    ) -> Polynomial:
        """
        f(e) for a piecewise-linear f, one binary and one continuous
        portion variable per segment.

        e must lie within [breakpoints[0], breakpoints[-1]].
        """
        family, n = self._family("pwl")
        selectors = []
        portions = []
        result = Polynomial()
        for k in range(1, len(breakpoints)):
            lo, hi = breakpoints[k - 1], breakpoints[k]
            y = self._variable(f"{family}_sel", (n, k), VariableKind.BINARY)
            w = self._variable(
                f"{family}_seg", (n, k), VariableKind.CONTINUOUS,
                (min(0, lo), max(0, hi)),
            )
            self._constraint(family, n, f"lo{k}", w - y * lo, ">=")
            self._constraint(family, n, f"hi{k}", w - y * hi, "<=")
            selectors.append(y)
            portions.append(w)
            result = result + w * slopes[k - 1] + y * intercepts[k - 1]

        self._constraint(family, n, "one", sum(selectors, Polynomial()), "==", 1)
        self._constraint(family, n, "link", sum(portions, Polynomial()) - expr, "==")
        return result

    def _family(self, operation: str) -> tuple[str, int]:
        family = f"{self.config.auxiliary_prefix}_{operation}"
        return family, self.assembler.next_index(family)

    def _variable(
        self,
        family: str,
        index: tuple,
        kind: VariableKind,
        bounds: tuple = (None, None),
    ) -> Polynomial:
        instance = self.assembler.declare_variable(
            family, index, kind, bounds, auxiliary=True
        )
        return Polynomial.variable(instance.key)

    def _constraint(
        self, family: str, n: int, tag: str, lhs: Polynomial, op: str, rhs: float = 0
    ):
        self.assembler.declare_constraint(f"{family}_{n}_{tag}", lhs, op, rhs)

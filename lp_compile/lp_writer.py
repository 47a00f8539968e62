"""
CPLEX LP text output.

Sections are emitted in the order the format expects: objective,
Subject To, Bounds, General, Binary, End. Variables and constraints
appear in declaration order, so the same model always produces the
same text.
"""

import math
from pathlib import Path
from typing import Union

from lp_compile.config import DEFAULT_CONFIG, CompilerConfig
from lp_compile.model import Direction, Model, VariableKind
from lp_compile.polynomial import Polynomial

_LP_OPERATORS = {"==": "=", "<=": "<=", ">=": ">="}


class LPWriter:
    """
    Render a Model as LP text.

    Usage:
        writer = LPWriter(model)
        text = writer.render()
    """

    def __init__(self, model: Model, config: CompilerConfig = DEFAULT_CONFIG):
        self.model = model
        self.config = config

    def render(self) -> str:
        lines: list[str] = []
        if self.model.name:
            lines.append(f"\\ Model {self.model.name}")
        self._add_objective(lines)
        self._add_constraints(lines)
        self._add_bounds(lines)
        self._add_kind_section(lines, "General", VariableKind.INTEGER)
        self._add_kind_section(lines, "Binary", VariableKind.BINARY)
        lines.append("End")
        return "\n".join(lines) + "\n"

    def _add_objective(self, lines: list[str]):
        objective = self.model.objective
        if objective is None:
            lines.append("Minimize")
            lines.append(" obj: 0")
            return
        if objective.direction is Direction.MAXIMIZE:
            lines.append("Maximize")
        else:
            lines.append("Minimize")
        text = self.format_terms(objective.polynomial)
        constant = objective.polynomial.constant
        if constant:
            sign = "-" if constant < 0 else "+"
            text = f"{text} {sign} {self.format_number(abs(constant))}"
        lines.append(f" {objective.name}: {text}")

    def _add_constraints(self, lines: list[str]):
        lines.append("Subject To")
        for constraint in self.model.constraints:
            terms, op, rhs = constraint.normalized()
            lines.append(
                f" {constraint.name}: {self.format_terms(terms)} "
                f"{_LP_OPERATORS[op]} {self.format_number(rhs)}"
            )

    def _add_bounds(self, lines: list[str]):
        bounds = []
        for instance in self.model.variables.values():
            if instance.kind is VariableKind.BINARY:
                continue
            bounds.append(self.format_bounds(instance.name, *instance.bounds()))
        if bounds:
            lines.append("Bounds")
            lines.extend(f" {b}" for b in bounds)

    def _add_kind_section(self, lines: list[str], header: str, kind: VariableKind):
        names = [v.name for v in self.model.variables.values() if v.kind is kind]
        if names:
            lines.append(header)
            lines.extend(f" {name}" for name in names)

    def format_bounds(self, name: str, lower: float, upper: float) -> str:
        if lower == -math.inf and upper == math.inf:
            return f"{name} free"
        if lower == upper:
            return f"{name} = {self.format_number(lower)}"
        if upper == math.inf:
            return f"{name} >= {self.format_number(lower)}"
        return (
            f"{self.format_number(lower)} <= {name} <= "
            f"{self.format_number(upper)}"
        )

    def format_terms(self, poly: Polynomial) -> str:
        """Linear terms as '3 x(1) - x(2)'; '0' when there are none."""
        parts = []
        for key, coef in poly.terms.items():
            name = self.model.variables[key].name
            magnitude = abs(coef)
            term = name if magnitude == 1 else f"{self.format_number(magnitude)} {name}"
            if not parts:
                parts.append(f"- {term}" if coef < 0 else term)
            else:
                parts.append(f"{'-' if coef < 0 else '+'} {term}")
        return " ".join(parts) if parts else "0"

    def format_number(self, value: float) -> str:
        if value == math.inf:
            return self.config.infinity_text
        if value == -math.inf:
            return f"-{self.config.infinity_text}"
        if float(value).is_integer():
            return str(int(value))
        return repr(float(value))


def to_lp(model: Model, config: CompilerConfig = DEFAULT_CONFIG) -> str:
    """Render a model as CPLEX LP text."""
    return LPWriter(model, config).render()


def write_lp(
    model: Model,
    path: Union[str, Path],
    config: CompilerConfig = DEFAULT_CONFIG,
) -> None:
    """Write a model to an LP file."""
    with open(path, "w") as f:
        f.write(to_lp(model, config))

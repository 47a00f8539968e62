"""
Model registry and assembler.

This module handles:
1. Variable kinds, objective directions and bound parsing
2. The Model: variable instances, constraints and objective, in insertion order
3. The ModelAssembler, the only way to mutate a Model, which enforces
   bound legality, redefinition rules, name uniqueness and the single objective
4. Name sanitization for the LP text format
"""

import logging
import math
import numbers
import re
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Iterator, Optional

from lp_compile.config import DEFAULT_CONFIG, CompilerConfig
from lp_compile.errors import (
    BoundsError,
    DuplicateNameError,
    DuplicateObjectiveError,
    InfeasibleConstraintError,
    ModelError,
    NonLinearError,
    RedefinitionError,
)
from lp_compile.polynomial import Polynomial, VarKey, as_polynomial, format_key

logger = logging.getLogger(__name__)


class VariableKind(Enum):
    CONTINUOUS = "continuous"
    INTEGER = "integer"
    BINARY = "binary"

    @classmethod
    def parse(cls, value: Any) -> "VariableKind":
        if isinstance(value, cls):
            return value
        text = str(value).lower()
        if text == "real":
            return cls.CONTINUOUS
        if text == "int":
            return cls.INTEGER
        try:
            return cls(text)
        except ValueError:
            raise ModelError(
                f"Unknown variable kind {value!r}; expected one of "
                f"{[k.value for k in cls]}"
            )


class Direction(Enum):
    MINIMIZE = "minimize"
    MAXIMIZE = "maximize"

    @classmethod
    def parse(cls, value: Any) -> "Direction":
        if isinstance(value, cls):
            return value
        text = str(value).lower().replace("mise", "mize")
        if text in ("min", "max"):
            text += "imize"
        try:
            return cls(text)
        except ValueError:
            raise ModelError(f"Unknown objective direction {value!r}")


INFINITY_TOKENS = {
    "inf": math.inf,
    "+inf": math.inf,
    "infinity": math.inf,
    "+infinity": math.inf,
    "-inf": -math.inf,
    "-infinity": -math.inf,
}


def parse_bound(value: Any) -> Optional[float]:
    """
    Parse a min_bound/max_bound option.

    None means "not given". Numbers pass through (numpy scalars are
    unwrapped); strings must be one of the infinity tokens.
    """
    if value is None:
        return None
    if isinstance(value, str):
        token = value.strip().lower()
        if token in INFINITY_TOKENS:
            return INFINITY_TOKENS[token]
        raise BoundsError(f"Invalid bound {value!r}")
    if hasattr(value, "item") and getattr(value, "ndim", None) == 0:
        value = value.item()
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        raise BoundsError(f"Invalid bound {value!r}")
    return value


# Characters allowed in CPLEX LP names besides letters and digits
_NAME_ILLEGAL = re.compile(r"[^A-Za-z0-9_!\"#$%&()/,.;?@'`{}|~]")
_INDEX_ILLEGAL = re.compile(r"[^A-Za-z0-9_!\"#$%&/.;?@'`{}|~]")
_NEEDS_PREFIX = re.compile(r"^([0-9.]|[eE][0-9])")


def sanitize_name(
    name: str, max_length: int = 255, index_part: bool = False
) -> str:
    """
    Make a name legal in the LP format.

    Illegal characters become "_", a leading digit or period (or an
    exponent-like "e1") gets a "_" prefix, and long names are truncated.
    Index positions also lose "(", ")" and ",".
    """
    pattern = _INDEX_ILLEGAL if index_part else _NAME_ILLEGAL
    sanitized = pattern.sub("_", name)
    if not index_part:
        if not sanitized or _NEEDS_PREFIX.match(sanitized):
            sanitized = "_" + sanitized
        sanitized = sanitized[:max_length]
    if sanitized != name:
        logger.info("Sanitized name %r to %r", name, sanitized)
    return sanitized


def variable_name(key: VarKey, max_length: int = 255) -> str:
    """LP name of a variable instance: family(idx1,idx2)."""
    family, index = key
    family = sanitize_name(family, max_length)
    if not index:
        return family
    parts = [sanitize_name(str(v), index_part=True) or "_" for v in index]
    full = f"{family}({','.join(parts)})"
    if len(full) > max_length:
        logger.info("Truncated variable name %r", full)
        full = full[:max_length]
    return full


# Objective row label, reserved among constraint names
OBJECTIVE_NAME = "obj"


@dataclass(frozen=True)
class VariableInstance:
    family: str
    index: tuple
    kind: VariableKind
    lower: Optional[float]
    upper: Optional[float]
    name: str
    raw_name: str
    description: Optional[str] = None
    auxiliary: bool = False

    @property
    def key(self) -> VarKey:
        return (self.family, self.index)

    def bounds(self) -> tuple[float, float]:
        """Effective bounds; binary is [0, 1], a missing bound is infinite."""
        if self.kind is VariableKind.BINARY:
            return (0, 1)
        lower = -math.inf if self.lower is None else self.lower
        upper = math.inf if self.upper is None else self.upper
        return (lower, upper)


@dataclass(frozen=True)
class Constraint:
    name: str
    raw_name: str
    lhs: Polynomial
    op: str
    rhs: Polynomial
    description: Optional[str] = None

    def normalized(self) -> tuple[Polynomial, str, float]:
        """Variables on the left, a single constant on the right."""
        difference = self.lhs - self.rhs
        return (difference.linear_part(), self.op, -difference.constant)


@dataclass(frozen=True)
class Objective:
    polynomial: Polynomial
    direction: Direction
    name: str = OBJECTIVE_NAME


@dataclass
class Model:
    """Everything declared so far. Mutate it only through a ModelAssembler."""

    name: Optional[str] = None
    variables: dict[VarKey, VariableInstance] = field(default_factory=dict)
    families: dict[str, list[tuple]] = field(default_factory=dict)
    constraints: list[Constraint] = field(default_factory=list)
    objective: Optional[Objective] = None
    variable_names: dict[str, VarKey] = field(default_factory=dict)
    constraint_names: dict[str, str] = field(default_factory=dict)
    counters: dict[str, int] = field(default_factory=dict)
    declarations: set = field(default_factory=set)

    def get_variable(self, key: VarKey) -> Optional[VariableInstance]:
        return self.variables.get(key)

    def has_family(self, family: str) -> bool:
        return family in self.families

    def index_tuples(self, family: str) -> list[tuple]:
        """Registered index tuples of a family, in declaration order."""
        return list(self.families.get(family, ()))

    def statistics(self) -> dict[str, int]:
        kinds = [v.kind for v in self.variables.values()]
        return {
            "variables": len(kinds),
            "integer": kinds.count(VariableKind.INTEGER),
            "binary": kinds.count(VariableKind.BINARY),
            "auxiliary": sum(v.auxiliary for v in self.variables.values()),
            "constraints": len(self.constraints),
            "objective": int(self.objective is not None),
        }


_OPERATORS = {"==": "==", "=": "==", "<=": "<=", ">=": ">=", "<": "<=", ">": ">="}


class ModelAssembler:
    """
    Accumulates variables, constraints and the objective into a Model.

    Usage:
        assembler = ModelAssembler()
        with assembler.transaction():
            assembler.declare_variable("x", (1,), "integer", (0, 10))
            assembler.declare_constraint("cap", x_poly, "<=", 5)

    Every public mutation runs inside a transaction. A failure rolls back
    everything the enclosing transaction did.
    """

    def __init__(
        self, model: Optional[Model] = None, config: CompilerConfig = DEFAULT_CONFIG
    ):
        self.model = model if model is not None else Model()
        self.config = config
        self._undo: Optional[list] = None

    # Registry view used by the wildcard expander and polynomial builder

    def get_variable(self, key: VarKey) -> Optional[VariableInstance]:
        return self.model.get_variable(key)

    def has_family(self, family: str) -> bool:
        return self.model.has_family(family)

    def index_tuples(self, family: str) -> list[tuple]:
        return self.model.index_tuples(family)

    def variable_bounds(self, key: VarKey) -> tuple[float, float]:
        instance = self.model.get_variable(key)
        if instance is None:
            return (-math.inf, math.inf)
        return instance.bounds()

    @contextmanager
    def transaction(self) -> Iterator["ModelAssembler"]:
        """Commit all changes made inside the block, or none of them."""
        if self._undo is not None:
            # Nested blocks join the outer transaction
            yield self
            return

        self._undo = []
        counters = dict(self.model.counters)
        try:
            yield self
        except BaseException:
            for action in reversed(self._undo):
                action()
            self.model.counters = counters
            raise
        finally:
            self._undo = None

    def next_index(self, counter: str) -> int:
        """Next value of a per-model counter, starting at 1."""
        value = self.model.counters.get(counter, 0) + 1
        self.model.counters[counter] = value
        return value

    def declare_variable(
        self,
        family: str,
        index: tuple = (),
        kind: Any = VariableKind.CONTINUOUS,
        bounds: tuple = (None, None),
        description: Optional[str] = None,
        auxiliary: bool = False,
    ) -> VariableInstance:
        """
        Declare one variable instance.

        Raises:
            BoundsError: If the bounds are illegal for the kind
            RedefinitionError: If the instance exists or the arity differs
            DuplicateNameError: If its LP name collides with another instance
        """
        with self.transaction():
            return self._declare_variable(
                family, tuple(index), kind, bounds, description, auxiliary
            )

    def declare_variables(
        self,
        family: str,
        indices: Iterable[tuple],
        kind: Any = VariableKind.CONTINUOUS,
        bounds: tuple = (None, None),
        description: Optional[str] = None,
    ) -> list[VariableInstance]:
        """Declare a batch of instances atomically."""
        with self.transaction():
            return [
                self._declare_variable(
                    family, tuple(index), kind, bounds, description, False
                )
                for index in indices
            ]

    def _declare_variable(self, family, index, kind, bounds, description, auxiliary):
        kind = VariableKind.parse(kind)
        lower, upper = (parse_bound(b) for b in bounds)
        key = (family, index)
        raw_name = format_key(key)
        check_bounds(raw_name, kind, lower, upper)

        existing = self.model.families.get(family)
        if existing:
            first = self.model.variables[(family, existing[0])]
            if len(existing[0]) != len(index):
                raise RedefinitionError(
                    f"Variable '{family}' has {len(existing[0])} indices, "
                    f"cannot declare {raw_name}"
                )
            if first.kind is not kind:
                raise RedefinitionError(
                    f"Variable '{family}' is {first.kind.value}, cannot add "
                    f"{kind.value} instance {raw_name}"
                )
        if key in self.model.variables:
            raise RedefinitionError(f"Variable {raw_name} is already declared")

        name = variable_name(key, self.config.max_name_length)
        if name in self.model.variable_names:
            other = format_key(self.model.variable_names[name])
            raise DuplicateNameError(
                f"Variable {raw_name} and {other} share the LP name '{name}'"
            )

        instance = VariableInstance(
            family, index, kind, lower, upper, name, raw_name,
            description, auxiliary,
        )
        self.model.variables[key] = instance
        self.model.variable_names[name] = key
        self.model.families.setdefault(family, []).append(index)
        self._record(lambda: self._remove_variable(instance))
        if auxiliary:
            logger.debug("Added auxiliary variable %s", raw_name)
        return instance

    def _remove_variable(self, instance: VariableInstance):
        del self.model.variables[instance.key]
        del self.model.variable_names[instance.name]
        indices = self.model.families[instance.family]
        indices.remove(instance.index)
        if not indices:
            del self.model.families[instance.family]

    def declare_constraint(
        self,
        name: Optional[str],
        lhs: Any,
        op: str,
        rhs: Any = 0,
        description: Optional[str] = None,
    ) -> Optional[Constraint]:
        """
        Add lhs op rhs to the model.

        Strict comparisons are stored in their non-strict form. A
        constraint without variables is checked instead of stored.

        Returns:
            The stored constraint, or None if it was trivially satisfied
        """
        if op == "!=":
            raise NonLinearError("'!=' constraints cannot be expressed in LP form")
        if op not in _OPERATORS:
            raise ValueError(f"Unknown constraint operator: {op}")
        op = _OPERATORS[op]
        lhs = as_polynomial(lhs)
        rhs = as_polynomial(rhs)

        difference = lhs - rhs
        if difference.is_constant():
            label = name or description or "constraint"
            if not _holds(difference.constant, op):
                raise InfeasibleConstraintError(
                    f"{label} reduces to {difference.constant} {op} 0, "
                    "which is false"
                )
            logger.info("Skipping %s: holds for every assignment", label)
            return None

        with self.transaction():
            if name is None:
                name = self._next_constraint_id()
            sanitized = sanitize_name(name, self.config.max_name_length)
            if sanitized == OBJECTIVE_NAME:
                raise DuplicateNameError(
                    f"Constraint name '{name}' is reserved for the objective"
                )
            if sanitized in self.model.constraint_names:
                other = self.model.constraint_names[sanitized]
                if other == name:
                    raise DuplicateNameError(f"Duplicate constraint name '{name}'")
                raise DuplicateNameError(
                    f"Constraint names '{name}' and '{other}' both become "
                    f"'{sanitized}'"
                )

            constraint = Constraint(sanitized, name, lhs, op, rhs, description)
            self.model.constraints.append(constraint)
            self.model.constraint_names[sanitized] = name
            self._record(lambda: self._remove_constraint(constraint))
            return constraint

    def _next_constraint_id(self) -> str:
        while True:
            name = f"c{self.next_index('constraint') - 1:08d}"
            if name not in self.model.constraint_names:
                return name

    def register_declaration(self, signature: Any, label: str):
        """
        Record one instance of a constraint statement.

        Raises:
            RedefinitionError: If the same statement was already compiled
                for this index tuple
        """
        with self.transaction():
            if signature in self.model.declarations:
                raise RedefinitionError(f"Constraint {label} is already declared")
            self.model.declarations.add(signature)
            self._record(lambda: self.model.declarations.discard(signature))

    def _remove_constraint(self, constraint: Constraint):
        self.model.constraints.remove(constraint)
        del self.model.constraint_names[constraint.name]

    def set_objective(
        self, polynomial: Any, direction: Any, replace: bool = False
    ) -> Objective:
        """
        Set the model objective.

        Raises:
            DuplicateObjectiveError: If one is already set and replace is False
        """
        objective = Objective(as_polynomial(polynomial), Direction.parse(direction))
        with self.transaction():
            previous = self.model.objective
            if previous is not None:
                if not replace:
                    raise DuplicateObjectiveError(
                        "The model already has an objective"
                    )
                logger.warning(
                    "Replacing existing %s objective", previous.direction.value
                )
            self.model.objective = objective
            self._record(lambda: setattr(self.model, "objective", previous))
        return objective

    def _record(self, undo):
        self._undo.append(undo)


def check_bounds(
    name: str, kind: VariableKind, lower: Optional[float], upper: Optional[float]
):
    """Raise BoundsError when bounds are illegal for the variable kind."""
    if kind is VariableKind.BINARY:
        if lower is not None or upper is not None:
            raise BoundsError(f"Binary variable {name} cannot have explicit bounds")
        return
    if kind is VariableKind.INTEGER:
        for bound in (lower, upper):
            if bound is not None and math.isfinite(bound) and bound != int(bound):
                raise BoundsError(
                    f"Integer variable {name} has non-integral bound {bound}"
                )
    if lower is not None and lower == math.inf:
        raise BoundsError(f"Variable {name} has a lower bound of +inf")
    if upper is not None and upper == -math.inf:
        raise BoundsError(f"Variable {name} has an upper bound of -inf")
    if lower is not None and upper is not None and lower > upper:
        raise BoundsError(
            f"Variable {name} has lower bound {lower} above upper bound {upper}"
        )


def _holds(value: float, op: str) -> bool:
    if op == "==":
        return value == 0
    if op == "<=":
        return value <= 0
    return value >= 0

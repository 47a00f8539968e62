"""
Expression compilation and model building entry points.

This module handles:
1. Compiling one expression tree to a Polynomial: generator sums, wildcard
   sums, pattern instance sets, nonlinear operators and linear folding
2. Declaration statements for variables, constraints and the objective
3. The imperative ModelCompiler and the declarative define() block

The two entry points differ only in how a second objective is treated:
define() rejects it, ModelCompiler.set_objective and modify() replace it
with a warning.
"""

import logging
from collections import ChainMap
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Union

from lp_compile.config import DEFAULT_CONFIG, CompilerConfig
from lp_compile.constants import EvalContext, evaluate, is_constant
from lp_compile.errors import (
    AmbiguousWildcardError,
    DomainError,
    NonLinearError,
    UnboundSymbolError,
)
from lp_compile.expr import (
    Abs,
    And,
    Comparison,
    GeneratorSum,
    IfThenElse,
    Max,
    Min,
    Node,
    Or,
    PatternInstanceSet,
    PiecewiseLinear,
    Sum,
    as_generator,
    as_node,
)
from lp_compile.generators import BindingSpace, index_values
from lp_compile.linearize import Linearizer
from lp_compile.model import (
    Constraint,
    Model,
    ModelAssembler,
    Objective,
    VariableInstance,
)
from lp_compile.polynomial import Polynomial, PolynomialBuilder
from lp_compile.wildcard import contains_wildcard, expand_wildcards, pattern_of

logger = logging.getLogger(__name__)


class ExpressionCompiler:
    """
    Compile expression trees against a model under construction.

    Usage:
        compiler = ExpressionCompiler(assembler)
        poly = compiler.compile(Sum((var("x", WILDCARD),)), context)
    """

    def __init__(self, assembler: ModelAssembler, config: Optional[CompilerConfig] = None):
        self.assembler = assembler
        self.config = config or assembler.config
        self.linearizer = Linearizer(assembler, self.config)

    def compile(self, node: Any, context: EvalContext) -> Polynomial:
        return self.builder(context).build(as_node(node))

    def builder(self, context: EvalContext) -> PolynomialBuilder:
        return PolynomialBuilder(context, self.assembler, self._extend)

    def _extend(self, node: Node, builder: PolynomialBuilder) -> Optional[Polynomial]:
        if is_constant(node):
            return None

        if isinstance(node, GeneratorSum):
            total = Polynomial()
            for inner in BindingSpace(node.generators, builder.context):
                total = total + self._sum_instances(
                    node.body, builder.with_context(inner)
                )
            return total

        if isinstance(node, Sum):
            total = Polynomial()
            for arg in node.args:
                total = total + self._sum_instances(arg, builder)
            return total

        if isinstance(node, PatternInstanceSet):
            raise AmbiguousWildcardError(
                f"{node!r} is only valid as the single argument of "
                "max, min, and, or"
            )

        if isinstance(node, Abs):
            return self.linearizer.abs_(builder.build(node.expr))

        if isinstance(node, (Max, Min)):
            operands = [builder.build(e) for e in self._operands(node, builder)]
            if isinstance(node, Max):
                return self.linearizer.max_(operands)
            return self.linearizer.min_(operands)

        if isinstance(node, (And, Or)):
            operands = [
                self._condition(e, builder) for e in self._operands(node, builder)
            ]
            if isinstance(node, And):
                return self.linearizer.and_(operands)
            return self.linearizer.or_(operands)

        if isinstance(node, IfThenElse):
            return self.linearizer.if_then_else(
                self._condition(node.cond, builder),
                builder.build(node.then),
                builder.build(node.else_),
            )

        if isinstance(node, PiecewiseLinear):
            return self.linearizer.piecewise(
                builder.build(node.expr),
                node.breakpoints,
                node.slopes,
                node.intercepts,
            )

        if isinstance(node, Comparison):
            raise NonLinearError(
                f"Comparison {node!r} of decision variables cannot be used "
                "as a value"
            )

        return None

    def _sum_instances(self, node: Node, builder: PolynomialBuilder) -> Polynomial:
        if isinstance(node, PatternInstanceSet):
            node = node.expr
        if not contains_wildcard(node):
            return builder.build(node)
        total = Polynomial()
        for instance in expand_wildcards(node, builder.context, self.assembler):
            total = total + builder.build(instance)
        return total

    def _operands(self, node: Node, builder: PolynomialBuilder) -> list[Node]:
        pattern = pattern_of(node)
        if pattern is None:
            return list(node.args)
        instances = expand_wildcards(pattern, builder.context, self.assembler)
        if not instances:
            raise DomainError(f"{node!r} has no instances to aggregate")
        return instances

    def _condition(self, node: Node, builder: PolynomialBuilder) -> Polynomial:
        if is_constant(node):
            value = evaluate(node, builder.context)
            if isinstance(value, bool):
                return Polynomial.const(int(value))
        return builder.build(node)


@dataclass(frozen=True)
class VariablesDecl:
    """
    Declare one variable instance per generator binding.

    min_bound and max_bound may be numbers, infinity tokens or
    expressions evaluated under each binding.
    """

    name: str
    generators: tuple = ()
    kind: str = "continuous"
    min_bound: Any = None
    max_bound: Any = None
    description: Optional[str] = None


@dataclass(frozen=True)
class ConstraintsDecl:
    """Declare one constraint per generator binding."""

    constraint: Comparison
    generators: tuple = ()
    description: Optional[str] = None


@dataclass(frozen=True)
class ObjectiveDecl:
    expr: Any
    direction: str = "minimize"


Statement = Union[VariablesDecl, ConstraintsDecl, ObjectiveDecl]


class ModelCompiler:
    """
    Build a model one declaration at a time.

    Usage:
        mc = ModelCompiler(parameters={"cap": {1: 4, 2: 6}})
        mc.add_variables("x", [("i", [1, 2])], min_bound=0,
                         max_bound=Lookup(sym("cap"), sym("i")))
        mc.add_constraints(Sum((var("x", WILDCARD),)) <= 8)
        mc.set_objective(Sum((var("x", WILDCARD),)), "maximize")
        print(mc.to_lp())

    Each declaration is atomic: if any binding fails, nothing from that
    declaration reaches the model.
    """

    def __init__(
        self,
        parameters: Optional[dict] = None,
        name: Optional[str] = None,
        config: CompilerConfig = DEFAULT_CONFIG,
    ):
        self.parameters = dict(parameters or {})
        self.config = config
        self.model = Model(name)
        self.assembler = ModelAssembler(self.model, config)
        self.expressions = ExpressionCompiler(self.assembler, config)

    @property
    def context(self) -> EvalContext:
        return EvalContext({}, self.parameters)

    def add_variables(
        self,
        name: str,
        generators: Iterable = (),
        kind: Any = "continuous",
        min_bound: Any = None,
        max_bound: Any = None,
        description: Optional[str] = None,
    ) -> list[VariableInstance]:
        generators = tuple(as_generator(g) for g in generators)
        instances = []
        with self.assembler.transaction():
            for context in BindingSpace(generators, self.context):
                bounds = (
                    self._bound(min_bound, context),
                    self._bound(max_bound, context),
                )
                instances.append(
                    self.assembler.declare_variable(
                        name,
                        index_values(context, generators),
                        kind,
                        bounds,
                        _interpolate(description, context),
                    )
                )
        logger.debug("Declared %d instance(s) of %s", len(instances), name)
        return instances

    def add_constraints(
        self,
        constraint: Comparison,
        generators: Iterable = (),
        description: Optional[str] = None,
    ) -> list[Constraint]:
        """
        Declare one constraint per generator binding.

        Repeating a statement is additive over new index tuples; a tuple
        it already covers raises RedefinitionError.
        """
        if not isinstance(constraint, Comparison):
            raise ValueError(f"A constraint must be a comparison, got {constraint!r}")
        generators = tuple(as_generator(g) for g in generators)
        constraints = []
        with self.assembler.transaction():
            for context in BindingSpace(generators, self.context):
                values = index_values(context, generators)
                self.assembler.register_declaration(
                    (repr(constraint), repr(values)),
                    f"{constraint!r} for {values}" if values else repr(constraint),
                )
                lhs = self.expressions.compile(constraint.left, context)
                rhs = self.expressions.compile(constraint.right, context)
                label = constraint_label(description, context, generators)
                added = self.assembler.declare_constraint(
                    label, lhs, constraint.op, rhs, label
                )
                if added is not None:
                    constraints.append(added)
        return constraints

    def set_objective(self, expr: Any, direction: Any = "minimize") -> Objective:
        """Set the objective, replacing (with a warning) any earlier one."""
        return self._objective(expr, direction, replace=True)

    def _objective(self, expr: Any, direction: Any, replace: bool) -> Objective:
        with self.assembler.transaction():
            poly = self.expressions.compile(expr, self.context)
            return self.assembler.set_objective(poly, direction, replace=replace)

    def apply(self, statement: Statement, replace_objective: bool = True):
        if isinstance(statement, VariablesDecl):
            return self.add_variables(
                statement.name,
                statement.generators,
                statement.kind,
                statement.min_bound,
                statement.max_bound,
                statement.description,
            )
        if isinstance(statement, ConstraintsDecl):
            return self.add_constraints(
                statement.constraint, statement.generators, statement.description
            )
        if isinstance(statement, ObjectiveDecl):
            return self._objective(
                statement.expr, statement.direction, replace=replace_objective
            )
        raise TypeError(f"Unknown statement: {statement!r}")

    def modify(self, statements: Iterable[Statement]) -> "ModelCompiler":
        """Apply statements to the existing model; a new objective replaces the old one."""
        for statement in statements:
            self.apply(statement, replace_objective=True)
        return self

    def to_lp(self) -> str:
        from lp_compile.lp_writer import to_lp

        return to_lp(self.model, self.config)

    def _bound(self, value: Any, context: EvalContext) -> Any:
        if not isinstance(value, Node):
            return value
        if not is_constant(value):
            raise DomainError(f"Bound {value!r} references decision variables")
        return evaluate(value, context)


def define(
    statements: Iterable[Statement],
    parameters: Optional[dict] = None,
    name: Optional[str] = None,
    config: CompilerConfig = DEFAULT_CONFIG,
) -> ModelCompiler:
    """
    Build a model from a block of statements.

    Raises:
        DuplicateObjectiveError: If the block sets more than one objective
    """
    compiler = ModelCompiler(parameters, name, config)
    for statement in statements:
        compiler.apply(statement, replace_objective=False)
    return compiler


def constraint_label(
    description: Optional[str], context: EvalContext, generators: tuple
) -> Optional[str]:
    """
    Name of one constraint instance.

    Placeholders such as "cap_{i}" are filled from the bindings; a plain
    description under generators gets the index values appended.
    """
    if description is None:
        return None
    if "{" in description:
        return _interpolate(description, context)
    values = index_values(context, generators)
    if not values:
        return description
    return "_".join([description] + [str(v) for v in values])


def _interpolate(text: Optional[str], context: EvalContext) -> Optional[str]:
    if text is None or "{" not in text:
        return text
    try:
        return text.format_map(ChainMap(dict(context.bindings), dict(context.parameters)))
    except KeyError as e:
        raise UnboundSymbolError(e.args[0], tuple(context.bindings))
    except (IndexError, TypeError, ValueError, AttributeError) as e:
        raise DomainError(f"Cannot fill description {text!r}: {e}")

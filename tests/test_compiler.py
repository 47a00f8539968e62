"""Tests for model compilation entry points."""

import logging

import pytest

from lp_compile.compiler import (
    ConstraintsDecl,
    ModelCompiler,
    ObjectiveDecl,
    VariablesDecl,
    define,
)
from lp_compile.errors import (
    BoundsError,
    DivisionByZeroError,
    DomainError,
    DuplicateObjectiveError,
    KeyNotFoundError,
    NonLinearError,
    RedefinitionError,
    UnboundSymbolError,
)
from lp_compile.expr import (
    WILDCARD,
    Abs,
    And,
    GeneratorSum,
    IfThenElse,
    Lookup,
    Max,
    Min,
    PatternInstanceSet,
    PiecewiseLinear,
    Range,
    Sum,
    eq,
    lit,
    sym,
    var,
)
from lp_compile.model import Direction, VariableKind
from lp_compile.polynomial import Polynomial

FOODS = {
    "bread": {"calories": 100, "cost": 2},
    "milk": {"calories": 150, "cost": 3},
}


class TestAddVariables:
    """Test variable declarations."""

    def test_one_instance_per_binding(self):
        """x[i] for i in 1..3 declares three instances."""
        mc = ModelCompiler()
        instances = mc.add_variables("x", [("i", Range(1, 3))], min_bound=0)
        assert [v.raw_name for v in instances] == ["x(1)", "x(2)", "x(3)"]

    def test_scalar_variable(self):
        """No generators declares a single scalar instance."""
        mc = ModelCompiler()
        (z,) = mc.add_variables("z", kind="integer", min_bound=0, max_bound=10)
        assert z.key == ("z", ())
        assert z.kind is VariableKind.INTEGER

    def test_bounds_from_parameters(self):
        """Bounds may be expressions evaluated per binding."""
        mc = ModelCompiler(parameters={"cap": {"a": 4, "b": 6}})
        instances = mc.add_variables(
            "x", [("i", sym("cap"))], min_bound=0,
            max_bound=Lookup(sym("cap"), sym("i")),
        )
        assert [v.upper for v in instances] == [4, 6]

    def test_bound_depending_on_variable(self):
        """Bounds cannot reference decision variables."""
        mc = ModelCompiler()
        mc.add_variables("y")
        with pytest.raises(DomainError):
            mc.add_variables("x", max_bound=var("y") + 1)

    def test_binary_with_max_bound(self):
        """Binary variables with a max_bound are rejected."""
        mc = ModelCompiler()
        with pytest.raises(BoundsError):
            mc.add_variables("x", [("i", [1, 2])], kind="binary", max_bound=1)
        assert mc.model.variables == {}

    def test_redeclaration(self):
        """Same domain twice fails; a disjoint domain adds instances."""
        mc = ModelCompiler()
        mc.add_variables("x", [("i", Range(1, 4))])
        with pytest.raises(RedefinitionError):
            mc.add_variables("x", [("i", Range(1, 4))])
        mc.add_variables("x", [("i", Range(5, 8))])
        assert len(mc.model.index_tuples("x")) == 8

    def test_description_interpolated(self):
        """Descriptions may name the bound values."""
        mc = ModelCompiler()
        (x,) = mc.add_variables("x", [("i", ["a"])], description="flow of {i}")
        assert x.description == "flow of a"


class TestAddConstraints:
    """Test constraint declarations."""

    def test_wildcard_sum_scenario(self):
        """sum(x[_]) == 2 over x(1..3) has three unit terms."""
        mc = ModelCompiler()
        mc.add_variables("x", [("i", Range(1, 3))])
        (c,) = mc.add_constraints(eq(Sum([var("x", WILDCARD)]), 2))
        terms, op, rhs = c.normalized()
        assert terms == Polynomial({("x", (1,)): 1, ("x", (2,)): 1, ("x", (3,)): 1})
        assert (op, rhs) == ("==", 2)

    def test_names_from_description(self):
        """Plain descriptions get the index values appended."""
        mc = ModelCompiler()
        mc.add_variables("x", [("i", [1, 2])])
        added = mc.add_constraints(var("x", "i") <= 5, [("i", [1, 2])], "cap")
        assert [c.name for c in added] == ["cap_1", "cap_2"]

    def test_names_from_placeholders(self):
        """Placeholders are filled from the bindings."""
        mc = ModelCompiler()
        mc.add_variables("x", [("i", [1, 2])])
        added = mc.add_constraints(
            var("x", "i") <= 5, [("i", [1, 2])], "limit on {i}"
        )
        assert [c.name for c in added] == ["limit_on_1", "limit_on_2"]
        assert added[0].raw_name == "limit on 1"
        assert added[0].description == "limit on 1"

    def test_repeated_statement(self):
        """The same constraint over the same domain is rejected, unnamed or not."""
        mc = ModelCompiler()
        mc.add_variables("x", [("i", Range(1, 6))])
        mc.add_constraints(var("x", "i") <= 5, [("i", Range(1, 3))])
        with pytest.raises(RedefinitionError):
            mc.add_constraints(var("x", "i") <= 5, [("i", Range(1, 3))])
        assert len(mc.model.constraints) == 3

    def test_repeated_statement_overlapping_domain(self):
        """An overlap rejects the whole statement."""
        mc = ModelCompiler()
        mc.add_variables("x", [("i", Range(1, 6))])
        mc.add_constraints(var("x", "i") <= 5, [("i", Range(1, 3))])
        with pytest.raises(RedefinitionError):
            mc.add_constraints(var("x", "i") <= 5, [("i", Range(3, 4))])
        assert len(mc.model.constraints) == 3

    def test_repeated_statement_disjoint_domain(self):
        """A disjoint domain adds the new instances."""
        mc = ModelCompiler()
        mc.add_variables("x", [("i", Range(1, 6))])
        mc.add_constraints(var("x", "i") <= 5, [("i", Range(1, 3))])
        mc.add_constraints(var("x", "i") <= 5, [("i", Range(4, 6))])
        names = [c.name for c in mc.model.constraints]
        assert len(names) == 6
        assert len(set(names)) == 6

    def test_rejected_statement_can_be_retried(self):
        """A statement that failed leaves no record behind."""
        mc = ModelCompiler(parameters={"cap": {"1": 3}})
        mc.add_variables("x", [("i", [1, 2])])
        constraint = var("x", "i") <= Lookup(sym("cap"), sym("i"))
        with pytest.raises(KeyNotFoundError):
            mc.add_constraints(constraint, [("i", [1, 2])])
        mc.add_constraints(constraint, [("i", [1])])
        assert len(mc.model.constraints) == 1

    def test_unknown_placeholder(self):
        """Placeholders must name bound values."""
        mc = ModelCompiler()
        mc.add_variables("x")
        with pytest.raises(UnboundSymbolError):
            mc.add_constraints(var("x") <= 1, description="cap_{j}")

    @pytest.mark.parametrize("description", ["cap_{0}", "cap_{i.size}", "cap_{i[0]}"])
    def test_unusable_placeholder(self, description):
        """Positional, attribute and item fields are compile errors."""
        mc = ModelCompiler()
        mc.add_variables("x", [("i", [1])])
        with pytest.raises(DomainError, match="Cannot fill description"):
            mc.add_constraints(var("x", "i") <= 1, [("i", [1])], description)
        assert mc.model.constraints == []

    def test_zero_divisor(self):
        """A zero entry in a divisor table is a compile error."""
        mc = ModelCompiler(parameters={"cap": {"1": 0}})
        mc.add_variables("x", [("i", [1])])
        with pytest.raises(DivisionByZeroError):
            mc.add_constraints(
                var("x", "i") <= 1 / Lookup(sym("cap"), sym("i")), [("i", [1])]
            )

    def test_unbound_name_regression(self):
        """x(o,i) under bindings o=A, i=X is the instance x(A,X)."""
        mc = ModelCompiler()
        mc.add_variables("x", [("o", ["A", "B"]), ("i", ["X", "Y"])])
        (c,) = mc.add_constraints(
            GeneratorSum(var("x", "o", "i"), [("o", ["A"]), ("i", ["X"])]) >= 1
        )
        assert c.lhs == Polynomial({("x", ("A", "X")): 1})

    def test_generator_name_missing(self):
        """A misspelt generator name is an error, not a silent zero."""
        mc = ModelCompiler()
        mc.add_variables("x", [("o", ["A"]), ("i", ["X"])])
        with pytest.raises(UnboundSymbolError):
            mc.add_constraints(
                GeneratorSum(var("x", "o", "j"), [("o", ["A"]), ("i", ["X"])]) >= 1
            )

    def test_atomic_declaration(self):
        """If one binding fails, no constraint from the statement is kept."""
        mc = ModelCompiler(parameters={"cap": {"1": 3}})
        mc.add_variables("x", [("i", [1, 2])])
        with pytest.raises(KeyNotFoundError):
            mc.add_constraints(
                var("x", "i") <= Lookup(sym("cap"), sym("i")), [("i", [1, 2])]
            )
        assert mc.model.constraints == []

    def test_abs_creates_auxiliaries(self):
        """abs() inside a constraint declares its auxiliary atomically."""
        mc = ModelCompiler()
        mc.add_variables("x", min_bound=-5, max_bound=5)
        mc.add_constraints(Abs(var("x")) <= 3, description="dev")
        stats = mc.model.statistics()
        assert stats["auxiliary"] == 1
        assert stats["constraints"] == 3

    def test_max_over_pattern(self):
        """max(x[_]) aggregates over the instances, not their sum."""
        mc = ModelCompiler()
        mc.add_variables("x", [("i", [1, 2, 3])], min_bound=0, max_bound=10)
        mc.add_constraints(Max([var("x", WILDCARD)]) <= 7)
        selectors = mc.model.index_tuples("aux_max_sel")
        assert selectors == [(1, 1), (1, 2), (1, 3)]

    def test_explicit_pattern_instance_set(self):
        """each(...) is the same as a bare wildcard argument."""
        mc = ModelCompiler()
        mc.add_variables("x", [("i", [1, 2])], min_bound=0, max_bound=10)
        mc.add_constraints(Min([PatternInstanceSet(var("x", WILDCARD))]) >= 1)
        assert len(mc.model.index_tuples("aux_min_sel")) == 2

    def test_and_of_binaries(self):
        """Logical operators work on binary variables."""
        mc = ModelCompiler()
        mc.add_variables("b", [("i", [1, 2])], kind="binary")
        mc.add_constraints(eq(And([var("b", WILDCARD)]), 1))
        assert mc.model.has_family("aux_and")

    def test_if_with_constant_condition(self):
        """A constant condition picks a branch without auxiliaries."""
        mc = ModelCompiler(parameters={"flag": 1})
        mc.add_variables("x")
        mc.add_variables("y")
        (c,) = mc.add_constraints(
            IfThenElse(eq(sym("flag"), 1), var("x"), var("y")) <= 4
        )
        assert c.lhs == Polynomial({("x", ()): 1})

    def test_piecewise(self):
        """Piecewise functions add one selector per segment."""
        mc = ModelCompiler()
        mc.add_variables("x", min_bound=0, max_bound=4)
        mc.add_constraints(
            PiecewiseLinear(var("x"), [0, 2, 4], [1, 3], [0, -4]) <= 5
        )
        assert len(mc.model.index_tuples("aux_pwl_sel")) == 2

    def test_comparison_as_value(self):
        """A comparison of variables cannot be used as a value."""
        mc = ModelCompiler()
        mc.add_variables("x", min_bound=0, max_bound=1)
        with pytest.raises(NonLinearError):
            mc.add_constraints(And([var("x") >= 1, var("x") <= 0]) >= 1)

    def test_not_a_comparison(self):
        """Constraints must be comparisons."""
        mc = ModelCompiler()
        with pytest.raises(ValueError):
            mc.add_constraints(var("x") + 1)


class TestObjectives:
    """Test objective handling on both paths."""

    def test_diet_objective(self):
        """The calories scenario as an objective."""
        mc = ModelCompiler(parameters={"foods": FOODS})
        mc.add_variables("qty", [("f", sym("foods"))], min_bound=0)
        tree = Sum([
            var("qty", WILDCARD)
            * Lookup(Lookup(sym("foods"), WILDCARD), sym("nutrient"))
        ])
        objective = mc.set_objective(
            GeneratorSum(tree, [("nutrient", ["calories"])]), "maximize"
        )
        assert objective.polynomial == Polynomial(
            {("qty", ("bread",)): 100, ("qty", ("milk",)): 150}
        )
        assert objective.direction is Direction.MAXIMIZE

    def test_imperative_replace_warns(self, caplog):
        """set_objective twice replaces with a warning."""
        mc = ModelCompiler()
        mc.add_variables("x")
        mc.set_objective(var("x"), "minimize")
        with caplog.at_level(logging.WARNING, logger="lp_compile.model"):
            mc.set_objective(var("x") * 2, "maximize")
        assert "Replacing" in caplog.text
        assert mc.model.objective.polynomial == Polynomial({("x", ()): 2})

    def test_define_rejects_second_objective(self):
        """The declarative block treats a second objective as fatal."""
        statements = [
            VariablesDecl("x"),
            ObjectiveDecl(var("x"), "minimize"),
            ObjectiveDecl(var("x") * 2, "maximize"),
        ]
        with pytest.raises(DuplicateObjectiveError):
            define(statements)

    def test_modify_replaces(self):
        """modify() after define() may replace the objective."""
        compiler = define(
            [VariablesDecl("x", min_bound=0), ObjectiveDecl(var("x"), "minimize")]
        )
        compiler.modify([
            VariablesDecl("y", min_bound=0),
            ConstraintsDecl(var("x") + var("y") >= 1, description="cover"),
            ObjectiveDecl(var("y"), "maximize"),
        ])
        assert compiler.model.objective.direction is Direction.MAXIMIZE
        assert [c.name for c in compiler.model.constraints] == ["cover"]

    def test_define_with_parameters(self):
        """define() threads parameters and the model name through."""
        compiler = define(
            [
                VariablesDecl("x", (("i", sym("I")),), min_bound=0),
                ConstraintsDecl(
                    var("x", "i") <= Lookup(sym("cap"), sym("i")),
                    (("i", sym("I")),),
                    "cap",
                ),
            ],
            parameters={"I": [1, 2], "cap": {1: 3, 2: 4}},
            name="caps",
        )
        assert compiler.model.name == "caps"
        assert [c.name for c in compiler.model.constraints] == ["cap_1", "cap_2"]

    def test_constant_objective_sum(self):
        """A generator sum over parameters only is a constant objective."""
        mc = ModelCompiler(parameters={"foods": FOODS})
        objective = mc.set_objective(
            GeneratorSum(
                Lookup(Lookup(sym("foods"), sym("f")), lit("cost")),
                [("f", sym("foods"))],
            )
        )
        assert objective.polynomial == 5

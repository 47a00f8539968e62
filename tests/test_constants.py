"""Tests for constant evaluation."""

from types import SimpleNamespace

import numpy as np
import pytest

from lp_compile.constants import (
    EvalContext,
    evaluate,
    is_constant,
    reduce_constant,
    resolve_symbol,
)
from lp_compile.errors import (
    AmbiguousWildcardError,
    DivisionByZeroError,
    DomainError,
    KeyNotFoundError,
    NonNumericError,
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
    PiecewiseLinear,
    Range,
    eq,
    lit,
    sym,
    var,
)

FOODS = {
    "bread": {"calories": 100, "cost": 2},
    "milk": {"calories": 150, "cost": 3},
}


class TestResolveSymbol:
    """Test bare-name resolution."""

    def test_binding_wins_over_parameter(self):
        """Bound generator names shadow parameters."""
        ctx = EvalContext({"n": 1}, {"n": 2})
        assert resolve_symbol("n", ctx) == 1

    def test_parameter(self):
        """Unbound names fall back to parameters."""
        assert resolve_symbol("n", EvalContext({}, {"n": 2})) == 2

    def test_unbound_never_returns_own_name(self):
        """An unknown name is an error, not its own text."""
        ctx = EvalContext({"o": "A"}, {})
        with pytest.raises(UnboundSymbolError) as exc:
            resolve_symbol("i", ctx)
        assert exc.value.name == "i"
        assert exc.value.bound == ("o",)

    def test_numpy_parameter_unwrapped(self):
        """numpy scalars come back as Python numbers."""
        value = resolve_symbol("rate", EvalContext({}, {"rate": np.float64(0.5)}))
        assert value == 0.5
        assert type(value) is float


class TestLookup:
    """Test container lookups."""

    def test_nested_lookup_with_bound_key(self):
        """A bound name used as a key resolves to its value."""
        node = Lookup(Lookup(sym("foods"), sym("f")), sym("nutrient"))
        ctx = EvalContext({"f": "milk", "nutrient": "calories"}, {"foods": FOODS})
        assert evaluate(node, ctx) == 150

    def test_unbound_key_is_literal_text(self):
        """An unbound bare name used as a key is its own text."""
        node = Lookup(Lookup(sym("foods"), sym("bread")), sym("cost"))
        assert evaluate(node, EvalContext({}, {"foods": FOODS})) == 2

    def test_symbol_and_string_keys_equivalent(self):
        """foods.bread and foods['bread'] address the same entry."""
        ctx = EvalContext({}, {"foods": FOODS})
        dotted = Lookup(Lookup(sym("foods"), sym("bread"), dot=True), sym("cost"), dot=True)
        bracket = Lookup(Lookup(sym("foods"), lit("bread")), lit("cost"))
        assert evaluate(dotted, ctx) == evaluate(bracket, ctx) == 2

    def test_dot_key_ignores_bindings(self):
        """Dot steps are always literal names."""
        node = Lookup(sym("foods"), sym("bread"), dot=True)
        ctx = EvalContext({"bread": "milk"}, {"foods": FOODS})
        assert evaluate(node, ctx) == FOODS["bread"]

    def test_missing_key(self):
        """Missing keys raise KeyNotFoundError."""
        node = Lookup(sym("foods"), lit("cheese"))
        with pytest.raises(KeyNotFoundError):
            evaluate(node, EvalContext({}, {"foods": FOODS}))

    def test_number_key_matches_json_text_key(self):
        """JSON tables have text keys; numeric keys still find them."""
        node = Lookup(sym("cap"), sym("i"))
        ctx = EvalContext({"i": 2}, {"cap": {"1": 10, "2": 20}})
        assert evaluate(node, ctx) == 20

    def test_sequence_and_array_index(self):
        """Lists and numpy arrays are indexed by position."""
        ctx = EvalContext({}, {"a": [5, 6], "b": np.array([7, 8])})
        assert evaluate(Lookup(sym("a"), lit(1)), ctx) == 6
        assert evaluate(Lookup(sym("b"), lit(0)), ctx) == 7

    def test_sequence_out_of_range(self):
        """Out-of-range positions raise KeyNotFoundError."""
        with pytest.raises(KeyNotFoundError):
            evaluate(Lookup(sym("a"), lit(2)), EvalContext({}, {"a": [5, 6]}))

    def test_attribute_lookup(self):
        """Objects are addressed by attribute with the dot form."""
        ctx = EvalContext({}, {"plant": SimpleNamespace(capacity=40)})
        node = Lookup(sym("plant"), sym("capacity"), dot=True)
        assert evaluate(node, ctx) == 40

    def test_wildcard_key_must_be_expanded(self):
        """An unexpanded wildcard key is ambiguous."""
        with pytest.raises(AmbiguousWildcardError):
            evaluate(Lookup(sym("foods"), WILDCARD), EvalContext({}, {"foods": FOODS}))


class TestEvaluate:
    """Test folding constant trees."""

    def test_arithmetic(self):
        """Arithmetic over parameters and literals."""
        ctx = EvalContext({}, {"a": 3})
        assert evaluate(sym("a") * 2 - 1, ctx) == 5
        assert evaluate(-sym("a") / 2, ctx) == -1.5

    def test_non_numeric_arithmetic(self):
        """Strings cannot take part in arithmetic."""
        with pytest.raises(NonNumericError):
            evaluate(lit("a") + 1, EvalContext())

    def test_division_by_zero_parameter(self):
        """A zero divisor from a parameter table is a compile error."""
        ctx = EvalContext({"i": 1}, {"cap": {"1": 0}})
        with pytest.raises(DivisionByZeroError, match="cap"):
            evaluate(1 / Lookup(sym("cap"), sym("i")), ctx)

    def test_comparisons_and_logic(self):
        """Comparisons yield booleans that And/Or/if combine."""
        ctx = EvalContext({"i": 2}, {})
        assert evaluate(And([sym("i") > 1, sym("i") <= 2]), ctx) is True
        assert evaluate(eq(sym("i"), 3), ctx) is False
        assert evaluate(IfThenElse(sym("i") > 1, 10, 20), ctx) == 10

    def test_abs_max_min(self):
        """Constant nonlinear operators fold directly."""
        ctx = EvalContext()
        assert evaluate(Abs(lit(-3)), ctx) == 3
        assert evaluate(Max([1, 5, 2]), ctx) == 5
        assert evaluate(Min([1, 5, 2]), ctx) == 1

    def test_generator_sum(self):
        """A constant generator sum folds to a number."""
        node = GeneratorSum(
            Lookup(Lookup(sym("foods"), sym("f")), lit("cost")),
            [("f", sym("foods"))],
        )
        assert evaluate(node, EvalContext({}, {"foods": FOODS})) == 5

    def test_range(self):
        """Ranges are inclusive."""
        assert evaluate(Range(1, sym("n")), EvalContext({}, {"n": 3})) == [1, 2, 3]

    def test_piecewise(self):
        """Piecewise functions pick the segment holding the argument."""
        node = PiecewiseLinear(lit(3), [0, 2, 4], [1, 3], [0, -4])
        assert evaluate(node, EvalContext()) == 5

    def test_piecewise_out_of_domain(self):
        """Arguments outside the breakpoints are rejected."""
        node = PiecewiseLinear(lit(5), [0, 2, 4], [1, 3], [0, -4])
        with pytest.raises(DomainError):
            evaluate(node, EvalContext())

    def test_variable_is_not_constant(self):
        """Variables and wildcards make a tree non-constant."""
        assert is_constant(sym("a") + 1)
        assert not is_constant(sym("a") + var("x"))
        assert not is_constant(Lookup(sym("a"), WILDCARD))

    def test_reduce_constant(self):
        """Non-constant nodes come back unchanged."""
        tree = var("x") + 1
        assert reduce_constant(tree, EvalContext()) is tree
        assert reduce_constant(lit(2) * 3, EvalContext()) == 6

"""Tests for the expression tree."""

import numpy as np
import pytest

from lp_compile.expr import (
    WILDCARD,
    BinaryOp,
    Comparison,
    Filter,
    Generator,
    GeneratorSum,
    Literal,
    Lookup,
    Max,
    Negate,
    PiecewiseLinear,
    SymbolicKey,
    VariableRef,
    as_generator,
    as_node,
    eq,
    lit,
    sym,
    var,
    walk,
)


class TestConstruction:
    """Test building trees with helpers and operators."""

    def test_var_turns_strings_into_symbols(self):
        """String indices become bare names, numbers become literals."""
        ref = var("x", "i", 2, WILDCARD)
        assert ref.indices == (SymbolicKey("i"), Literal(2), WILDCARD)

    def test_arithmetic_operators(self):
        """Python operators build BinaryOp nodes."""
        tree = 2 * var("x") + 1
        assert isinstance(tree, BinaryOp)
        assert tree.op == "+"
        assert tree.left == BinaryOp("*", Literal(2), var("x"))
        assert tree.right == Literal(1)

    def test_negation(self):
        """Unary minus builds Negate."""
        assert -var("x") == Negate(var("x"))

    def test_comparison_operators(self):
        """<= builds a Comparison; == stays structural equality."""
        tree = var("x") <= 3
        assert tree == Comparison("<=", var("x"), Literal(3))
        assert var("x") == var("x")
        assert eq(var("x"), 1).op == "=="

    def test_nodes_are_hashable(self):
        """Frozen nodes can be used as dict keys."""
        assert len({var("x", 1), var("x", 1), var("x", 2)}) == 2

    def test_nary_args_normalised(self):
        """Lists of plain values become tuples of nodes."""
        node = Max([var("x"), 3])
        assert node.args == (var("x"), Literal(3))

    def test_numpy_scalar_literal(self):
        """numpy scalars are unwrapped into Python numbers."""
        node = as_node(np.float64(2.5))
        assert node == Literal(2.5)
        assert type(node.value) is float

    def test_invalid_value(self):
        """Unsupported values are rejected."""
        with pytest.raises(TypeError):
            as_node(object())

    def test_unknown_operator(self):
        """BinaryOp only accepts arithmetic operators."""
        with pytest.raises(ValueError):
            BinaryOp("^", lit(1), lit(2))


class TestLookup:
    """Test constant lookup nodes."""

    def test_bracket_lookup_any_key(self):
        """Bracket form accepts any key."""
        node = Lookup(sym("foods"), lit("white bread"))
        assert repr(node) == "foods['white bread']"

    def test_dot_lookup_bare_name(self):
        """Dot form accepts bare identifiers."""
        node = Lookup(sym("foods"), sym("bread"), dot=True)
        assert repr(node) == "foods.bread"

    def test_dot_lookup_rejects_punctuation(self):
        """Dot form with a non-identifier key is rejected."""
        with pytest.raises(ValueError, match="bracket"):
            Lookup(sym("foods"), sym("white-bread"), dot=True)

    def test_dot_lookup_rejects_literal(self):
        """Dot form needs a bare name, not a literal."""
        with pytest.raises(ValueError):
            Lookup(sym("foods"), lit("bread"), dot=True)


class TestPiecewiseLinear:
    """Test piecewise-linear validation."""

    def test_valid(self):
        """Two segments need three breakpoints."""
        node = PiecewiseLinear(var("x"), [0, 1, 2], [1, 2], [0, -1])
        assert node.breakpoints == (0, 1, 2)

    def test_segment_count_mismatch(self):
        """Slopes and intercepts must match the segment count."""
        with pytest.raises(ValueError, match="slopes"):
            PiecewiseLinear(var("x"), [0, 1, 2], [1], [0])

    def test_breakpoints_not_increasing(self):
        """Breakpoints must be strictly increasing."""
        with pytest.raises(ValueError, match="increasing"):
            PiecewiseLinear(var("x"), [0, 0, 2], [1, 2], [0, 0])


class TestGenerators:
    """Test generator normalisation."""

    def test_tuple_pair(self):
        """(name, domain) pairs become Generators with tuple domains."""
        gen = as_generator(("i", [1, 2]))
        assert gen == Generator("i", (1, 2))

    def test_bare_node_is_filter(self):
        """A bare node in a generator list is a filter."""
        item = as_generator(sym("i") > 1)
        assert isinstance(item, Filter)

    def test_generator_sum_children_include_domains(self):
        """walk() reaches filter expressions and domain expressions."""
        node = GeneratorSum(var("x", "i"), [("i", sym("I")), sym("i") > 1])
        names = [n.name for n in walk(node) if isinstance(n, SymbolicKey)]
        assert "I" in names
        assert names.count("i") == 2


class TestWalk:
    """Test tree traversal."""

    def test_preorder(self):
        """Parents come before children, left before right."""
        tree = var("x", 1) + var("y")
        nodes = list(walk(tree))
        assert nodes[0] is tree
        assert nodes[1] == var("x", 1)
        assert nodes[2] == Literal(1)
        assert nodes[3] == var("y")

    def test_variable_ref_normalises_indices(self):
        """Plain index values become literals."""
        assert VariableRef("x", (1, "A")).indices == (Literal(1), Literal("A"))

"""
lp-compile: Compile optimization-model expressions into LP text.

This package takes structured expression trees (variables, sums over
generators, wildcards, constant lookups, nonlinear operators) together with
model parameters, reduces them to linear polynomials, linearizes abs, max,
min, and, or, if-then-else and piecewise-linear functions with auxiliary
variables, and writes the assembled model in CPLEX LP format.
"""

__version__ = "0.1.0"

from lp_compile.compiler import (
    ConstraintsDecl,
    ExpressionCompiler,
    ModelCompiler,
    ObjectiveDecl,
    VariablesDecl,
    define,
)
from lp_compile.config import CompilerConfig
from lp_compile.constants import EvalContext
from lp_compile.lp_writer import to_lp, write_lp
from lp_compile.model import Direction, Model, ModelAssembler, VariableKind
from lp_compile.polynomial import Polynomial, PolynomialBuilder

__all__ = [
    "CompilerConfig",
    "ConstraintsDecl",
    "Direction",
    "EvalContext",
    "ExpressionCompiler",
    "Model",
    "ModelAssembler",
    "ModelCompiler",
    "ObjectiveDecl",
    "Polynomial",
    "PolynomialBuilder",
    "VariableKind",
    "VariablesDecl",
    "define",
    "to_lp",
    "write_lp",
]

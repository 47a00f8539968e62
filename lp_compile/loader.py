"""
JSON model documents.

A document holds a name, a parameter table and a list of statements:

    {
      "name": "diet",
      "parameters": {"foods": {"bread": {"cost": 2}, "milk": {"cost": 3}}},
      "statements": [
        {"variables": "qty", "over": [["f", "foods"]], "min_bound": 0},
        {"constraint": {"op": ">=", "args": [{"var": "qty", "index": ["f"]}, 1]},
         "over": [["f", "foods"]], "description": "min_{f}"},
        {"objective": {"op": "sum", "args": [
            {"op": "*", "args": [{"var": "qty", "index": ["_"]},
                                 {"get": ["foods", "_", {"lit": "cost"}]}]}]},
         "direction": "minimize"}
      ]
    }

Expressions: numbers are literals, "_" is the wildcard, other strings are
bare names, {"lit": v} is a literal, {"var": name, "index": [...]} a
variable reference, {"get": [root, key, ...]} a lookup chain (or
{"dot": [root, name, ...]} for attribute-style steps), and
{"op": ..., "args": [...]} everything else.
"""

import json
from pathlib import Path
from typing import Any, Optional, Union

from lp_compile.compiler import ConstraintsDecl, ObjectiveDecl, Statement, VariablesDecl
from lp_compile.expr import (
    WILDCARD,
    Abs,
    And,
    BinaryOp,
    Comparison,
    Filter,
    Generator,
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
)

_NARY = {"max": Max, "min": Min, "and": And, "or": Or}


class ModelDocument:
    """A parsed model document."""

    def __init__(self, name: str, parameters: dict, statements: list[Statement]):
        self.name = name
        self.parameters = parameters
        self.statements = statements


def parse_model_json(model_json: str) -> ModelDocument:
    """
    Parse a JSON model document.

    Raises:
        ValueError: If JSON is invalid or the document is malformed
    """
    try:
        data = json.loads(model_json)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid model JSON: {e}")
    return parse_model(data)


def load_model(path: Union[str, Path]) -> ModelDocument:
    with open(path) as f:
        return parse_model_json(f.read())


def parse_model(data: Any) -> ModelDocument:
    if not isinstance(data, dict):
        raise ValueError("Invalid model JSON: top level must be an object")
    parameters = data.get("parameters", {})
    if not isinstance(parameters, dict):
        raise ValueError("Invalid model JSON: 'parameters' must be an object")
    statements = [parse_statement(s) for s in data.get("statements", [])]
    return ModelDocument(data.get("name"), parameters, statements)


def parse_statement(data: Any) -> Statement:
    if not isinstance(data, dict):
        raise ValueError(f"Invalid model JSON: statement {data!r} is not an object")
    generators = tuple(parse_generator(g) for g in data.get("over", []))

    if "variables" in data:
        return VariablesDecl(
            name=data["variables"],
            generators=generators,
            kind=data.get("kind", "continuous"),
            min_bound=_parse_bound(data.get("min_bound")),
            max_bound=_parse_bound(data.get("max_bound")),
            description=data.get("description"),
        )

    if "constraint" in data:
        constraint = parse_expression(data["constraint"])
        if not isinstance(constraint, Comparison):
            raise ValueError(
                f"Invalid model JSON: constraint {data['constraint']!r} "
                "is not a comparison"
            )
        return ConstraintsDecl(constraint, generators, data.get("description"))

    if "objective" in data:
        return ObjectiveDecl(
            parse_expression(data["objective"]),
            data.get("direction", "minimize"),
        )

    raise ValueError(f"Invalid model JSON: unknown statement {data!r}")


def parse_generator(data: Any):
    """["i", domain] or {"filter": expr}. A JSON list domain is taken as is."""
    if isinstance(data, dict) and "filter" in data:
        return Filter(parse_expression(data["filter"]))
    if isinstance(data, list) and len(data) == 2 and isinstance(data[0], str):
        name, domain = data
        if isinstance(domain, list):
            return Generator(name, domain)
        return Generator(name, parse_expression(domain))
    raise ValueError(f"Invalid model JSON: bad generator {data!r}")


def _parse_bound(data: Any) -> Any:
    # Infinity tokens and numbers stay plain; anything structured is an expression
    if data is None or isinstance(data, (int, float, str)):
        return data
    return parse_expression(data)


def parse_expression(data: Any) -> Node:
    if isinstance(data, bool):
        raise ValueError("Invalid model JSON: booleans are not expressions")
    if isinstance(data, (int, float)):
        return Literal(data)
    if isinstance(data, str):
        return WILDCARD if data == "_" else SymbolicKey(data)
    if not isinstance(data, dict):
        raise ValueError(f"Invalid model JSON: bad expression {data!r}")

    if "lit" in data:
        return Literal(data["lit"])
    if "var" in data:
        return VariableRef(
            data["var"], tuple(parse_expression(i) for i in data.get("index", []))
        )
    if "get" in data or "dot" in data:
        dot = "dot" in data
        root, *keys = data["dot" if dot else "get"]
        node = parse_expression(root)
        for key in keys:
            node = Lookup(node, parse_expression(key), dot=dot)
        return node
    if "op" in data:
        return _parse_operator(data)
    raise ValueError(f"Invalid model JSON: bad expression {data!r}")


def _parse_operator(data: dict) -> Node:
    op = data["op"]
    args = [parse_expression(a) for a in data.get("args", [])]

    if op in ("+", "-", "*", "/"):
        if op == "-" and len(args) == 1:
            return Negate(args[0])
        _arity(op, args, at_least=2)
        node = args[0]
        for arg in args[1:]:
            node = BinaryOp(op, node, arg)
        return node
    if op == "neg":
        _arity(op, args, exactly=1)
        return Negate(args[0])
    if op in ("==", "!=", "<=", ">=", "<", ">"):
        _arity(op, args, exactly=2)
        return Comparison(op, args[0], args[1])
    if op == "sum":
        if "body" in data:
            generators = tuple(parse_generator(g) for g in data.get("over", []))
            return GeneratorSum(parse_expression(data["body"]), generators)
        return Sum(tuple(args))
    if op == "each":
        _arity(op, args, exactly=1)
        return PatternInstanceSet(args[0])
    if op == "abs":
        _arity(op, args, exactly=1)
        return Abs(args[0])
    if op in _NARY:
        _arity(op, args, at_least=1)
        return _NARY[op](tuple(args))
    if op == "if":
        _arity(op, args, exactly=3)
        return IfThenElse(*args)
    if op == "range":
        _arity(op, args, exactly=2)
        return Range(*args)
    if op == "piecewise":
        _arity(op, args, exactly=1)
        try:
            return PiecewiseLinear(
                args[0], data["breakpoints"], data["slopes"], data["intercepts"]
            )
        except (KeyError, ValueError) as e:
            raise ValueError(f"Invalid model JSON: piecewise: {e}")
    raise ValueError(f"Invalid model JSON: unknown operator {op!r}")


def _arity(
    op: str, args: list, exactly: Optional[int] = None, at_least: Optional[int] = None
):
    if exactly is not None and len(args) != exactly:
        raise ValueError(
            f"Invalid model JSON: '{op}' takes {exactly} argument(s), got {len(args)}"
        )
    if at_least is not None and len(args) < at_least:
        raise ValueError(
            f"Invalid model JSON: '{op}' takes at least {at_least} argument(s)"
        )

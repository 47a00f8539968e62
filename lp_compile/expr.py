"""
Expression tree for optimization-model expressions.

The surface front end hands the compiler trees built from these nodes.
Nodes are immutable dataclasses; the arithmetic and comparison operators
are overloaded so trees can be written naturally:

    x = var("x", WILDCARD)
    tree = Sum((x * Lookup(sym("cost"), WILDCARD),)) <= 100
"""

import re
from dataclasses import dataclass
from typing import Any, Iterator, Union

ARITHMETIC_OPS = ("+", "-", "*", "/")
COMPARISON_OPS = ("==", "!=", "<=", ">=", "<", ">")

_BARE_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class Node:
    """Base class for expression-tree nodes."""

    __slots__ = ()

    def __add__(self, other):
        return BinaryOp("+", self, as_node(other))

    def __radd__(self, other):
        return BinaryOp("+", as_node(other), self)

    def __sub__(self, other):
        return BinaryOp("-", self, as_node(other))

    def __rsub__(self, other):
        return BinaryOp("-", as_node(other), self)

    def __mul__(self, other):
        return BinaryOp("*", self, as_node(other))

    def __rmul__(self, other):
        return BinaryOp("*", as_node(other), self)

    def __truediv__(self, other):
        return BinaryOp("/", self, as_node(other))

    def __rtruediv__(self, other):
        return BinaryOp("/", as_node(other), self)

    def __neg__(self):
        return Negate(self)

    def __le__(self, other):
        return Comparison("<=", self, as_node(other))

    def __ge__(self, other):
        return Comparison(">=", self, as_node(other))

    def __lt__(self, other):
        return Comparison("<", self, as_node(other))

    def __gt__(self, other):
        return Comparison(">", self, as_node(other))

    def children(self) -> tuple["Node", ...]:
        """Direct sub-expressions of this node."""
        return ()


@dataclass(frozen=True)
class Wildcard(Node):
    """Placeholder meaning "every value of this dimension's domain"."""

    def __repr__(self) -> str:
        return "_"


WILDCARD = Wildcard()


@dataclass(frozen=True)
class Literal(Node):
    """A number, or a string used as an index value or lookup key."""

    value: Any

    def __repr__(self) -> str:
        return repr(self.value)


@dataclass(frozen=True)
class SymbolicKey(Node):
    """A bare name: a bound generator, a parameter, or a lookup key."""

    name: str

    def __repr__(self) -> str:
        return self.name


@dataclass(frozen=True)
class VariableRef(Node):
    """Reference to a decision variable instance, possibly wildcarded."""

    name: str
    indices: tuple = ()

    def __post_init__(self):
        object.__setattr__(
            self, "indices", tuple(as_node(i) for i in self.indices)
        )

    def children(self):
        return self.indices

    def __repr__(self) -> str:
        if not self.indices:
            return self.name
        return f"{self.name}[{', '.join(map(repr, self.indices))}]"


@dataclass(frozen=True)
class Lookup(Node):
    """
    One step of a nested constant lookup: container[key].

    With dot=True the step was written as container.key, which is only
    allowed for bare identifier keys.
    """

    container: Node
    key: Node
    dot: bool = False

    def __post_init__(self):
        object.__setattr__(self, "container", as_node(self.container))
        object.__setattr__(self, "key", as_node(self.key))
        if self.dot:
            if not isinstance(self.key, SymbolicKey) or not _BARE_NAME.match(
                self.key.name
            ):
                raise ValueError(
                    f"Dot access requires a bare name key, got {self.key!r}; "
                    "use bracket indexing instead"
                )

    def children(self):
        return (self.container, self.key)

    def __repr__(self) -> str:
        if self.dot:
            return f"{self.container!r}.{self.key!r}"
        return f"{self.container!r}[{self.key!r}]"


@dataclass(frozen=True)
class BinaryOp(Node):
    op: str
    left: Node
    right: Node

    def __post_init__(self):
        object.__setattr__(self, "left", as_node(self.left))
        object.__setattr__(self, "right", as_node(self.right))
        if self.op not in ARITHMETIC_OPS:
            raise ValueError(f"Unknown arithmetic operator: {self.op}")

    def children(self):
        return (self.left, self.right)

    def __repr__(self) -> str:
        return f"({self.left!r} {self.op} {self.right!r})"


@dataclass(frozen=True)
class Negate(Node):
    expr: Node

    def __post_init__(self):
        object.__setattr__(self, "expr", as_node(self.expr))

    def children(self):
        return (self.expr,)

    def __repr__(self) -> str:
        return f"-{self.expr!r}"


@dataclass(frozen=True)
class Comparison(Node):
    op: str
    left: Node
    right: Node

    def __post_init__(self):
        object.__setattr__(self, "left", as_node(self.left))
        object.__setattr__(self, "right", as_node(self.right))
        if self.op not in COMPARISON_OPS:
            raise ValueError(f"Unknown comparison operator: {self.op}")

    def children(self):
        return (self.left, self.right)

    def __repr__(self) -> str:
        return f"{self.left!r} {self.op} {self.right!r}"


@dataclass(frozen=True)
class Range(Node):
    """Inclusive integer range start..stop with expression ends."""

    start: Node
    stop: Node

    def __post_init__(self):
        object.__setattr__(self, "start", as_node(self.start))
        object.__setattr__(self, "stop", as_node(self.stop))

    def children(self):
        return (self.start, self.stop)

    def __repr__(self) -> str:
        return f"{self.start!r}..{self.stop!r}"


@dataclass(frozen=True)
class Generator:
    """A bound name iterating over an ordered, finite domain."""

    name: str
    domain: Any

    def __post_init__(self):
        if isinstance(self.domain, list):
            object.__setattr__(self, "domain", tuple(self.domain))


@dataclass(frozen=True)
class Filter:
    """A boolean condition that prunes the generator cross-product."""

    expr: Node


GeneratorItem = Union[Generator, Filter]


def _nary(cls):
    """Normalise the args field of an n-ary node to a tuple of nodes."""

    def __post_init__(self):
        object.__setattr__(self, "args", tuple(as_node(a) for a in self.args))

    def children(self):
        return self.args

    cls.__post_init__ = __post_init__
    cls.children = children
    return cls


@dataclass(frozen=True)
@_nary
class Sum(Node):
    """
    Explicit n-ary sum, or a single wildcarded pattern to be summed
    over its expanded instances.
    """

    args: tuple


@dataclass(frozen=True)
class GeneratorSum(Node):
    body: Node
    generators: tuple

    def __post_init__(self):
        object.__setattr__(self, "body", as_node(self.body))
        object.__setattr__(
            self, "generators", tuple(as_generator(g) for g in self.generators)
        )

    def children(self):
        nodes = [self.body]
        for gen in self.generators:
            if isinstance(gen, Filter):
                nodes.append(gen.expr)
            elif isinstance(gen.domain, Node):
                nodes.append(gen.domain)
        return tuple(nodes)


@dataclass(frozen=True)
class PatternInstanceSet(Node):
    """The expanded instances of a wildcarded expression, as operands."""

    expr: Node

    def __post_init__(self):
        object.__setattr__(self, "expr", as_node(self.expr))

    def children(self):
        return (self.expr,)

    def __repr__(self) -> str:
        return f"each({self.expr!r})"


@dataclass(frozen=True)
class Abs(Node):
    expr: Node

    def __post_init__(self):
        object.__setattr__(self, "expr", as_node(self.expr))

    def children(self):
        return (self.expr,)


@dataclass(frozen=True)
@_nary
class Max(Node):
    args: tuple


@dataclass(frozen=True)
@_nary
class Min(Node):
    args: tuple


@dataclass(frozen=True)
@_nary
class And(Node):
    args: tuple


@dataclass(frozen=True)
@_nary
class Or(Node):
    args: tuple


@dataclass(frozen=True)
class IfThenElse(Node):
    cond: Node
    then: Node
    else_: Node

    def __post_init__(self):
        object.__setattr__(self, "cond", as_node(self.cond))
        object.__setattr__(self, "then", as_node(self.then))
        object.__setattr__(self, "else_", as_node(self.else_))

    def children(self):
        return (self.cond, self.then, self.else_)


@dataclass(frozen=True)
class PiecewiseLinear(Node):
    """
    f(expr) = slopes[k] * expr + intercepts[k] on the k-th segment
    [breakpoints[k], breakpoints[k + 1]].
    """

    expr: Node
    breakpoints: tuple
    slopes: tuple
    intercepts: tuple

    def __post_init__(self):
        object.__setattr__(self, "expr", as_node(self.expr))
        for name in ("breakpoints", "slopes", "intercepts"):
            object.__setattr__(self, name, tuple(getattr(self, name)))

        if len(self.breakpoints) < 2:
            raise ValueError("Piecewise function needs at least 2 breakpoints")
        segments = len(self.breakpoints) - 1
        if len(self.slopes) != segments or len(self.intercepts) != segments:
            raise ValueError(
                f"Expected {segments} slopes and intercepts for "
                f"{len(self.breakpoints)} breakpoints"
            )
        pairs = zip(self.breakpoints, self.breakpoints[1:])
        if any(lo >= hi for lo, hi in pairs):
            raise ValueError("Breakpoints must be strictly increasing")

    def children(self):
        return (self.expr,)


NARY_OPERATORS = (Max, Min, And, Or)


def as_node(value: Any) -> Node:
    """Wrap plain Python values as literals; pass nodes through."""
    if isinstance(value, Node):
        return value
    if hasattr(value, "item") and getattr(value, "ndim", None) == 0:
        # numpy scalar
        value = value.item()
    if isinstance(value, (int, float, str)):
        return Literal(value)
    raise TypeError(f"Cannot use {value!r} as an expression")


def as_generator(item: Any) -> GeneratorItem:
    """Accept Generator/Filter objects, (name, domain) pairs or bare filters."""
    if isinstance(item, (Generator, Filter)):
        return item
    if isinstance(item, tuple) and len(item) == 2 and isinstance(item[0], str):
        return Generator(item[0], item[1])
    if isinstance(item, Node):
        return Filter(item)
    raise TypeError(f"Invalid generator: {item!r}")


def var(name: str, *indices: Any) -> VariableRef:
    """Build a variable reference: var("x", "i", WILDCARD) is x[i, _]."""
    return VariableRef(
        name, tuple(sym(i) if isinstance(i, str) else i for i in indices)
    )


def sym(name: str) -> SymbolicKey:
    return SymbolicKey(name)


def lit(value: Any) -> Literal:
    return Literal(value)


def eq(left: Any, right: Any) -> Comparison:
    """Equality comparison (== stays structural equality on nodes)."""
    return Comparison("==", as_node(left), as_node(right))


def ne(left: Any, right: Any) -> Comparison:
    return Comparison("!=", as_node(left), as_node(right))


def walk(node: Node) -> Iterator[Node]:
    """Yield every node of the tree, depth first, parents before children."""
    stack = [node]
    while stack:
        current = stack.pop()
        yield current
        stack.extend(reversed(current.children()))

"""
Error taxonomy for lp-compile.

Every failure raised while compiling an expression or declaring a model
entity derives from CompileError, so callers can catch the whole family
at the boundary (the CLI turns them into click exceptions).
"""


class CompileError(Exception):
    """Base class for all compilation failures."""


class DomainError(CompileError):
    """A generator domain cannot be reduced to a finite ordered sequence."""


class UnboundSymbolError(CompileError):
    """A name is neither bound by a generator nor a model parameter."""

    def __init__(self, name: str, bound: tuple[str, ...] = ()):
        self.name = name
        self.bound = bound
        available = ", ".join(bound) if bound else "(none)"
        super().__init__(
            f"Symbol '{name}' is not bound in the current context "
            f"(bound names: {available})"
        )


class KeyNotFoundError(CompileError):
    """A resolved key does not exist in the addressed container."""

    def __init__(self, key, container_description: str = "container"):
        self.key = key
        super().__init__(f"Key {key!r} not found in {container_description}")


class AmbiguousWildcardError(CompileError):
    """The domain of a wildcard cannot be uniquely determined."""


class NonLinearError(CompileError):
    """A non-linear combination reached the polynomial builder."""


class UnboundedLinearizationError(CompileError):
    """Big-M sizing is impossible because an operand is unbounded."""


class UndefinedVariableError(CompileError):
    """A concrete variable reference names no declared instance."""


class NonNumericError(CompileError):
    """A non-numeric constant was used in an arithmetic position."""


class DivisionByZeroError(CompileError):
    """A constant divisor evaluates to zero."""


class InfeasibleConstraintError(CompileError):
    """A constraint without variables evaluates to false."""


class ModelError(CompileError):
    """Base class for model assembler invariant violations."""


class RedefinitionError(ModelError):
    """A variable instance or constraint is declared twice."""


class BoundsError(ModelError):
    """Bounds are illegal for the variable kind."""


class DuplicateObjectiveError(ModelError):
    """A second objective was set through the declarative path."""


class DuplicateNameError(ModelError):
    """Two constraints share a name after sanitization."""

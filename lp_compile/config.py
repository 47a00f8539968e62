"""Compiler settings shared by the assembler, linearizer and LP writer."""

from dataclasses import dataclass


@dataclass(frozen=True)
class CompilerConfig:
    """
    Tunable settings for a compilation run.

    Attributes:
        big_m_slack: Multiplier applied to every big-M constant derived from
            operand bounds. 1.0 gives the tightest valid formulation.
        max_name_length: Longest name accepted by the target LP format.
        auxiliary_prefix: Prefix for families introduced by linearization.
        infinity_text: How infinite bounds are written in LP output.
    """

    big_m_slack: float = 1.0
    max_name_length: int = 255
    auxiliary_prefix: str = "aux"
    infinity_text: str = "1e+30"

    def __post_init__(self):
        if self.big_m_slack < 1.0:
            raise ValueError(
                f"big_m_slack must be >= 1.0, got {self.big_m_slack}"
            )
        if self.max_name_length < 1:
            raise ValueError("max_name_length must be positive")


DEFAULT_CONFIG = CompilerConfig()

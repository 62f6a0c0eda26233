"""
Model Specifications
====================

The five mixed-model formulas of the study, in lme4 notation:

    Full: obs ~ condition + (condition | lab)   fixed + random slope
    A:    obs ~ 1 + (1 | lab)                   no fixed, no random slope
    B:    obs ~ 1 + (condition | lab)           no fixed, random slope kept
    C1:   obs ~ condition + (1 | lab)           fixed kept, no random slope
    C2:   same model as A, used as the baseline for C1

C2 is an enum alias of A, so iterating ModelSpec yields the four models
that actually need fitting.
"""

from enum import Enum


class ModelSpec(Enum):
    """Mixed-model formula identifiers."""
    FULL = 'full'
    A = 'null_a'
    B = 'null_b'
    C1 = 'null_c1'
    C2 = 'null_a'  # alias: identical model object to A

    @property
    def has_fixed_slope(self) -> bool:
        """Population-level condition effect in the model."""
        return self in (ModelSpec.FULL, ModelSpec.C1)

    @property
    def has_random_slope(self) -> bool:
        """Lab-specific condition effect in the model."""
        return self in (ModelSpec.FULL, ModelSpec.B)

    @property
    def formula(self) -> str:
        """Fixed-effects formula (patsy syntax)."""
        return 'obs ~ condition' if self.has_fixed_slope else 'obs ~ 1'

    @property
    def re_formula(self) -> str:
        """Random-effects formula for the lab grouping (patsy syntax)."""
        return '~condition' if self.has_random_slope else '~1'

    @property
    def lme4_formula(self) -> str:
        """Human-readable formula for logs and reports."""
        fixed = 'condition' if self.has_fixed_slope else '1'
        random = 'condition' if self.has_random_slope else '1'
        return f'obs ~ {fixed} + ({random} | lab)'


FITTED_SPECS = tuple(ModelSpec)

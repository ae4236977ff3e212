from __future__ import annotations


class SingularDesignError(ValueError):
    """
    Raised when a design matrix is rank-deficient.

    ``terms`` lists the design columns that add no rank (collinear with the
    columns before them), or the strata that lack one treatment level.
    Fatal to the estimation call that raised it.
    """

    def __init__(self, message: str, terms: tuple[str, ...] = ()) -> None:
        super().__init__(message)
        self.terms = tuple(terms)


class DegenerateWeightError(ValueError):
    """
    Raised (or attached to a weighting result) when units cannot receive a
    finite weight: a propensity score of exactly 0 or 1, or a stratum cell
    with no units of the opposite group.

    ``unit_ids`` holds the affected units and ``n_units`` their count, so the
    caller can see exactly what was excluded.
    """

    def __init__(
        self,
        message: str,
        unit_ids: tuple = (),
        strata: tuple = (),
    ) -> None:
        super().__init__(message)
        self.unit_ids = tuple(unit_ids)
        self.strata = tuple(strata)

    @property
    def n_units(self) -> int:
        return len(self.unit_ids)


class InsufficientCommonSupportError(ValueError):
    """Raised when the common-support region is empty after the caliper is applied."""

    def __init__(self, message: str, lower: float, upper: float) -> None:
        super().__init__(message)
        self.lower = lower
        self.upper = upper


class WeakInstrumentWarning(UserWarning):
    """Issued when the first-stage F-statistic falls below the weak-instrument threshold."""
    pass

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
import pandas as pd

from ._exceptions import InsufficientCommonSupportError

logger = logging.getLogger(__name__)

DEFAULT_CALIPER = 0.2


@dataclass(frozen=True, eq=False)
class CommonSupport:
    """
    The overlap region of logit scores between treated and control units.

    ``in_support`` is aligned with the scores passed to ``common_support()``.
    ``n_excluded`` is the number of units outside the region; it is part of
    the result, not an internal detail, and should be reported alongside any
    estimate computed on the retained units.
    """

    lower: float
    upper: float
    width: float
    in_support: pd.Series
    n_excluded_treated: int
    n_excluded_control: int

    @property
    def n_excluded(self) -> int:
        return self.n_excluded_treated + self.n_excluded_control

    @property
    def n_retained(self) -> int:
        return int(self.in_support.sum())

    def summary(self) -> str:
        lines = [
            "",
            "Common support (logit scale)",
            "─" * 50,
            f"  Region               : [{self.lower:.4f}, {self.upper:.4f}]",
            f"  Caliper width        : {self.width:>10.4f}",
            f"  Units retained       : {self.n_retained:>10d}",
            f"  Excluded (treated)   : {self.n_excluded_treated:>10d}",
            f"  Excluded (control)   : {self.n_excluded_control:>10d}",
            "",
        ]
        return "\n".join(lines)

    def __repr__(self) -> str:
        return self.summary()


def common_support(
    logit: pd.Series,
    treatment: pd.Series,
    caliper: float = DEFAULT_CALIPER,
) -> CommonSupport:
    """
    Compute the common-support region of logit scores.

    The caliper is a fraction of the sample standard deviation of all logit
    scores; it widens the overlap on both sides::

        lower = max(min logit_T, min logit_C) - caliper * sd(logit)
        upper = min(max logit_T, max logit_C) + caliper * sd(logit)

    Parameters
    ----------
    logit : pd.Series
        Logit propensity scores.
    treatment : pd.Series
        Binary treatment indicator aligned with ``logit``.
    caliper : float
        Fraction of the logit-score SD added to each bound. Default 0.2.

    Raises
    ------
    ``InsufficientCommonSupportError``
        If the region is empty, or contains no treated or no control units.
    """
    if caliper < 0:
        raise ValueError(f"Caliper must be non-negative; got {caliper}.")

    logit = pd.Series(np.asarray(logit, dtype=float), index=getattr(logit, "index", None))
    treated = np.asarray(treatment) == 1
    if len(treated) != len(logit):
        raise ValueError("Logit scores and treatment must have the same length.")
    if not treated.any() or treated.all():
        raise ValueError("Scores must include both treated and control units.")
    if not np.isfinite(logit.to_numpy()).all():
        raise ValueError("Logit scores must be finite.")

    width = caliper * float(logit.std(ddof=1))
    lt, lc = logit[treated], logit[~treated]
    lower = max(lt.min(), lc.min()) - width
    upper = min(lt.max(), lc.max()) + width

    if lower > upper:
        raise InsufficientCommonSupportError(
            f"Common support is empty: lower bound {lower:.4f} exceeds upper "
            f"bound {upper:.4f} after a caliper of {width:.4f}. Consider a wider "
            f"caliper or a different covariate set.",
            lower=float(lower), upper=float(upper),
        )

    in_support = (logit >= lower) & (logit <= upper)
    n_excl_t = int((~in_support[treated]).sum())
    n_excl_c = int((~in_support[~treated]).sum())

    if not in_support[treated].any() or not in_support[~treated].any():
        raise InsufficientCommonSupportError(
            f"Common support [{lower:.4f}, {upper:.4f}] holds no "
            f"{'treated' if not in_support[treated].any() else 'control'} units.",
            lower=float(lower), upper=float(upper),
        )

    if n_excl_t or n_excl_c:
        logger.warning(
            "Common support [%.4f, %.4f] excludes %d treated and %d control units",
            lower, upper, n_excl_t, n_excl_c,
        )
    else:
        logger.info("Common support [%.4f, %.4f] retains all %d units", lower, upper, len(logit))

    return CommonSupport(
        lower=float(lower),
        upper=float(upper),
        width=width,
        in_support=in_support,
        n_excluded_treated=n_excl_t,
        n_excluded_control=n_excl_c,
    )

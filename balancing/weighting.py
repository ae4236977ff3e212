from __future__ import annotations

import logging

import numpy as np
import pandas as pd

from ._exceptions import DegenerateWeightError

logger = logging.getLogger(__name__)


def _as_tuple(values) -> tuple:
    return tuple(v.item() if isinstance(v, np.generic) else v for v in values)


def iptw_weights(probability: pd.Series, treatment: pd.Series, ids=None) -> pd.Series:
    """
    Stabilised inverse-probability-of-treatment weights (ATE).

    With ``p̄`` the mean treatment rate of the units passed in::

        treated:  p̄ / p
        control:  (1 - p̄) / (1 - p)

    Scores should already be restricted to common support.

    Parameters
    ----------
    probability : pd.Series
        Propensity scores.
    treatment : pd.Series
        Binary treatment indicator aligned with ``probability``.
    ids : array-like, optional
        Unit ids aligned with ``probability``, used to name offending units
        in errors. Defaults to the index of ``probability``.

    Raises
    ------
    ``DegenerateWeightError``
        If any score is not strictly inside (0, 1). These would get an
        infinite weight; the model should be revisited rather than the units
        quietly dropped.
    """
    p = np.asarray(probability, dtype=float)
    t = np.asarray(treatment, dtype=int)
    index = getattr(probability, "index", pd.RangeIndex(len(p)))
    if len(p) != len(t):
        raise ValueError("probability and treatment must have the same length.")
    if ids is None:
        ids = np.asarray(index)
    ids = np.asarray(ids)

    bad = ~((p > 0) & (p < 1))
    if bad.any():
        raise DegenerateWeightError(
            f"{int(bad.sum())} units have propensity scores outside (0, 1) and "
            f"would receive infinite IPTW weights. Revisit the propensity model "
            f"(perfect prediction) or tighten common support.",
            unit_ids=_as_tuple(ids[bad]),
        )

    p_bar = t.mean()
    w = np.where(t == 1, p_bar / p, (1.0 - p_bar) / (1.0 - p))
    logger.info(
        "IPTW weights for %d units: range [%.4f, %.4f], sum %.2f",
        len(w), w.min(), w.max(), w.sum(),
    )
    return pd.Series(w, index=index, name="weight")


class MMWSWeights:
    """
    Marginal-mean weights from a stratification.

    ``weights`` is ``NaN`` for units excluded because their stratum has no
    unit of the opposite group. ``degenerate`` describes those exclusions
    (ids, count, strata) and is ``None`` when every unit has a weight.
    """

    def __init__(self, weights: pd.Series, degenerate: DegenerateWeightError | None) -> None:
        self._weights = weights
        self._degenerate = degenerate

    @property
    def weights(self) -> pd.Series:
        return self._weights.copy()

    @property
    def valid(self) -> pd.Series:
        """Boolean mask of units with a defined weight."""
        return self._weights.notna()

    @property
    def degenerate(self) -> DegenerateWeightError | None:
        return self._degenerate

    @property
    def n_excluded(self) -> int:
        return 0 if self._degenerate is None else self._degenerate.n_units

    def __repr__(self) -> str:
        return f"MMWSWeights(n={int(self.valid.sum())}, excluded={self.n_excluded})"


def mmws_weights(strata: pd.Series, treatment: pd.Series, ids=None, strict: bool = False) -> MMWSWeights:
    """
    Marginal-mean weights within propensity-score strata (ATE).

    Within stratum ``s`` of size ``n_s``::

        treated:  n_s / n_s,treated
        control:  n_s / n_s,control

    so treated weights (and control weights) in a stratum each sum to the
    stratum size. If a stratum has no units of one group, the units of the
    other group in that stratum cannot be weighted: their weight is ``NaN``
    and they are listed on ``MMWSWeights.degenerate``.

    Parameters
    ----------
    strata : pd.Series
        Stratum labels.
    treatment : pd.Series
        Binary treatment indicator aligned with ``strata``.
    ids : array-like, optional
        Unit ids aligned with ``strata``. Defaults to the index of ``strata``.
    strict : bool
        Raise ``DegenerateWeightError`` instead of excluding units.
    """
    s = np.asarray(strata)
    t = np.asarray(treatment, dtype=int)
    index = getattr(strata, "index", pd.RangeIndex(len(s)))
    if len(s) != len(t):
        raise ValueError("strata and treatment must have the same length.")
    ids = np.asarray(index) if ids is None else np.asarray(ids)

    frame = pd.DataFrame({"stratum": s, "treated": t})
    n_s = frame.groupby("stratum")["treated"].transform("size").to_numpy(dtype=float)
    n_t = frame.groupby("stratum")["treated"].transform("sum").to_numpy(dtype=float)
    n_c = n_s - n_t

    with np.errstate(divide="ignore"):
        w = np.where(t == 1, n_s / n_t, n_s / n_c)
    # A unit's own group is never empty, so zero counts only arise for the partner cell.
    degenerate_mask = np.where(t == 1, n_c == 0, n_t == 0)
    w[degenerate_mask] = np.nan

    degenerate = None
    if degenerate_mask.any():
        bad_strata = tuple(sorted(set(_as_tuple(s[degenerate_mask]))))
        degenerate = DegenerateWeightError(
            f"{int(degenerate_mask.sum())} units in strata {list(bad_strata)} have no "
            f"units of the opposite group and were excluded from MMWS weighting.",
            unit_ids=_as_tuple(ids[degenerate_mask]),
            strata=bad_strata,
        )
        if strict:
            raise degenerate
        logger.warning("%s", degenerate)

    logger.info(
        "MMWS weights for %d units (%d excluded)",
        int((~degenerate_mask).sum()), int(degenerate_mask.sum()),
    )
    return MMWSWeights(pd.Series(w, index=index, name="weight"), degenerate)

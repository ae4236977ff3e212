from __future__ import annotations

import logging

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

DEFAULT_N_STRATA = 5
_MODES = ("quantile", "width")


class Stratification:
    """
    Stratum labels (``1..n_strata``) for a set of units, plus the logit-score
    edges that define each stratum.

    Strata partition the scored units exhaustively and disjointly. In
    ``"width"`` mode some strata may be empty; ``sizes`` always lists every
    stratum, empty ones with a count of zero.
    """

    def __init__(self, labels: pd.Series, edges: np.ndarray, mode: str, n_strata: int) -> None:
        self._labels = labels
        self._edges = edges
        self._mode = mode
        self._n_strata = n_strata

    @property
    def labels(self) -> pd.Series:
        return self._labels.copy()

    @property
    def edges(self) -> np.ndarray:
        return self._edges.copy()

    @property
    def mode(self) -> str:
        return self._mode

    @property
    def n_strata(self) -> int:
        return self._n_strata

    @property
    def sizes(self) -> pd.Series:
        """Units per stratum, indexed by label ``1..n_strata``."""
        counts = self._labels.value_counts()
        return counts.reindex(range(1, self._n_strata + 1), fill_value=0).rename("n")

    def bounds(self, label: int) -> tuple[float, float]:
        """The logit-score interval ``(lower, upper]`` of one stratum (first is closed)."""
        if not 1 <= label <= self._n_strata:
            raise ValueError(f"Stratum label must be in 1..{self._n_strata}; got {label}.")
        return float(self._edges[label - 1]), float(self._edges[label])

    def __repr__(self) -> str:
        sizes = ", ".join(f"{k}: {v}" for k, v in self.sizes.items())
        return f"Stratification(mode={self._mode!r}, sizes={{{sizes}}})"


class Stratifier:
    """
    Partition units into propensity-score strata on the logit scale.

    Parameters
    ----------
    n_strata : int
        Number of strata. Default 5.
    mode : {"quantile", "width"}
        ``"quantile"`` gives equal-frequency strata (by rank, so ties on the
        boundary are split deterministically and no stratum is empty);
        ``"width"`` gives equal-width intervals over the score range, which
        can leave tail strata empty or nearly so.
    """

    def __init__(self, n_strata: int = DEFAULT_N_STRATA, mode: str = "quantile") -> None:
        if n_strata < 1:
            raise ValueError(f"n_strata must be at least 1; got {n_strata}.")
        if mode not in _MODES:
            raise ValueError(f"Stratifier mode must be one of {_MODES}; got '{mode}'.")
        self._n_strata = int(n_strata)
        self._mode = mode

    def fit(self, logit: pd.Series) -> Stratification:
        """Assign every unit to exactly one stratum."""
        logit = pd.Series(np.asarray(logit, dtype=float), index=getattr(logit, "index", None))
        k = self._n_strata
        if len(logit) < k and self._mode == "quantile":
            raise ValueError(
                f"Cannot form {k} equal-frequency strata from {len(logit)} units."
            )

        if self._mode == "width":
            edges = np.linspace(logit.min(), logit.max(), k + 1)
            # Interior edges only: bins are right-closed, the first includes the minimum.
            codes = np.searchsorted(edges[1:-1], logit.to_numpy(), side="left")
            labels = pd.Series(codes + 1, index=logit.index, dtype=int)
        else:
            ranks = logit.rank(method="first")
            codes = pd.qcut(ranks, k, labels=False)
            labels = pd.Series(np.asarray(codes, dtype=int) + 1, index=logit.index)
            edges = np.array(
                [logit.min()] + [logit[labels == s].max() for s in range(1, k + 1)]
            )

        result = Stratification(labels.rename("stratum"), edges, self._mode, k)
        empty = [int(s) for s, n in result.sizes.items() if n == 0]
        if empty:
            logger.warning("Equal-width stratification left strata %s empty", empty)
        logger.info("Stratified %d units into %d %s strata", len(logit), k, self._mode)
        return result


def stratum_diagnostics(
    stratification: Stratification,
    logit: pd.Series,
    treatment: pd.Series,
    outcome: pd.Series,
) -> pd.DataFrame:
    """
    Per-stratum, per-group summary of logit score and outcome.

    One row per stratum and group (``treated`` 1/0), empty cells included,
    sorted by stratum then group. Columns: ``stratum, treated, n,
    logit_mean, logit_var, outcome_mean, outcome_var, lower, upper``.
    Variances use ``ddof=1`` and are ``NaN`` for cells with fewer than two
    units.
    """
    frame = pd.DataFrame({
        "stratum": stratification.labels.to_numpy(),
        "treated": np.asarray(treatment, dtype=int),
        "logit": np.asarray(logit, dtype=float),
        "outcome": np.asarray(outcome, dtype=float),
    })

    rows = []
    for s in range(1, stratification.n_strata + 1):
        lower, upper = stratification.bounds(s)
        for g in (1, 0):
            cell = frame[(frame["stratum"] == s) & (frame["treated"] == g)]
            rows.append({
                "stratum": s,
                "treated": g,
                "n": len(cell),
                "logit_mean": cell["logit"].mean(),
                "logit_var": cell["logit"].var(ddof=1),
                "outcome_mean": cell["outcome"].mean(),
                "outcome_var": cell["outcome"].var(ddof=1),
                "lower": lower,
                "upper": upper,
            })
    return pd.DataFrame(rows)

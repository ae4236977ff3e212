"""
Covariate balance diagnostics.

Every pass reports, per design term, the standardized mean difference

    SMD = |mean_T - mean_C| / sqrt((var_T + var_C) / 2)

and the variance ratio ``var_T / var_C``, before and after adjustment. The
SMD denominator always comes from the unadjusted ("before") sample, so the
before and after columns are on the same scale. A variance ratio is ``NaN``
whenever either group's variance is zero; the row is kept.
"""
from __future__ import annotations

import logging

import numpy as np
import pandas as pd

from .terms import TermSet

logger = logging.getLogger(__name__)

BALANCE_COLUMNS = ["term", "diff_before", "variance_ratio_before", "diff_after", "variance_ratio_after"]


def _weighted_moments(x: np.ndarray, w: np.ndarray) -> tuple[float, float]:
    """
    Weighted mean and variance.

    The variance uses the ``V1 - V2/V1`` correction so that unit weights
    reproduce the ordinary ``ddof=1`` sample variance.
    """
    if len(x) == 0:
        return float("nan"), float("nan")
    v1 = w.sum()
    mean = float(np.sum(w * x) / v1)
    denom = v1 - np.sum(w ** 2) / v1
    if denom <= 0:
        return mean, float("nan")
    return mean, float(np.sum(w * (x - mean) ** 2) / denom)


def _group_moments(x: np.ndarray, treated: np.ndarray, w: np.ndarray):
    mt, vt = _weighted_moments(x[treated], w[treated])
    mc, vc = _weighted_moments(x[~treated], w[~treated])
    return mt, vt, mc, vc


def _variance_ratio(vt: float, vc: float) -> float:
    if not (np.isfinite(vt) and np.isfinite(vc)) or vt == 0 or vc == 0:
        return float("nan")
    return vt / vc


def _smd(diff: float, scale: float) -> float:
    if not np.isfinite(scale) or scale == 0:
        return float("nan")
    return abs(diff) / scale


class BalanceTable:
    """
    One row per term: ``diff_before, variance_ratio_before, diff_after,
    variance_ratio_after``. ``diff_*`` are standardized mean differences.
    """

    def __init__(self, frame: pd.DataFrame, kind: str) -> None:
        self._frame = frame
        self._kind = kind

    @property
    def frame(self) -> pd.DataFrame:
        return self._frame.copy()

    @property
    def kind(self) -> str:
        """Which adjustment produced the "after" columns."""
        return self._kind

    @property
    def terms(self) -> list[str]:
        return self._frame["term"].tolist()

    def row(self, term: str) -> pd.Series:
        match = self._frame[self._frame["term"] == term]
        if match.empty:
            raise KeyError(f"No balance row for term '{term}'.")
        return match.iloc[0]

    def undefined_variance_ratios(self) -> list[str]:
        """Terms whose variance ratio is undefined before or after adjustment."""
        f = self._frame
        mask = f["variance_ratio_before"].isna() | f["variance_ratio_after"].isna()
        return f.loc[mask, "term"].tolist()

    def summary(self) -> str:
        lines = [
            "",
            f"Covariate balance ({self._kind})",
            "─" * 66,
            f"  {'term':<24}{'SMD before':>10}{'VR before':>10}{'SMD after':>11}{'VR after':>10}",
        ]
        for _, r in self._frame.iterrows():
            lines.append(
                f"  {str(r['term'])[:23]:<24}{r['diff_before']:>10.4f}"
                f"{r['variance_ratio_before']:>10.4f}{r['diff_after']:>11.4f}"
                f"{r['variance_ratio_after']:>10.4f}"
            )
        undefined = self.undefined_variance_ratios()
        if undefined:
            lines.append("")
            lines.append(f"  Variance ratio undefined (zero group variance): {', '.join(undefined)}")
        lines.append("")
        return "\n".join(lines)

    def __repr__(self) -> str:
        return self.summary()


class BalanceDiagnostics:
    """
    Compare covariate balance before and after an adjustment.

    Parameters
    ----------
    terms : TermSet
        The terms to check (main effects and interactions, dummy-expanded).
    treatment : str
        Binary treatment column.

    Each method takes ``before``, the unadjusted sample whose group variances
    fix the SMD denominator, and returns a ``BalanceTable`` sorted by term.
    Categorical covariates in the adjusted sample are coded with the levels
    of ``before``, so a level absent after adjustment still has its row.
    """

    def __init__(self, terms: TermSet, treatment: str) -> None:
        self._terms = terms
        self._treatment = treatment

    def _design(self, data: pd.DataFrame, levels=None) -> tuple[pd.DataFrame, np.ndarray]:
        if self._treatment not in data.columns:
            raise ValueError(f"Treatment column '{self._treatment}' not found in dataframe.")
        X = self._terms.design(data, constant=False, levels=levels)
        treated = data[self._treatment].to_numpy() == 1
        return X, treated

    def _before(self, before: pd.DataFrame) -> pd.DataFrame:
        X, treated = self._design(before)
        w = np.ones(len(before))
        rows = []
        for term in X.columns:
            x = X[term].to_numpy(dtype=float)
            ok = ~np.isnan(x)
            mt, vt, mc, vc = _group_moments(x[ok], treated[ok], w[ok])
            scale = np.sqrt((vt + vc) / 2.0)
            rows.append({
                "term": term,
                "scale": scale,
                "diff_before": _smd(mt - mc, scale),
                "variance_ratio_before": _variance_ratio(vt, vc),
            })
        return pd.DataFrame(rows, columns=["term", "scale", "diff_before", "variance_ratio_before"])

    def _assemble(self, before: pd.DataFrame, after: dict[str, tuple[float, float, float]], kind: str) -> BalanceTable:
        rows = []
        for _, r in self._before(before).iterrows():
            diff, vt, vc = after[r["term"]]
            rows.append({
                "term": r["term"],
                "diff_before": r["diff_before"],
                "variance_ratio_before": r["variance_ratio_before"],
                "diff_after": _smd(diff, r["scale"]),
                "variance_ratio_after": _variance_ratio(vt, vc),
            })
        frame = pd.DataFrame(rows, columns=BALANCE_COLUMNS)
        frame = frame.sort_values("term", kind="mergesort").reset_index(drop=True)
        return BalanceTable(frame, kind)

    def _weighted_after(self, data: pd.DataFrame, weights, levels) -> dict[str, tuple[float, float, float]]:
        X, treated = self._design(data, levels)
        w = np.asarray(weights, dtype=float)
        if len(w) != len(data):
            raise ValueError("weights must be aligned with data.")
        if np.any(w < 0):
            raise ValueError("weights must be non-negative.")
        usable = ~np.isnan(w)
        after = {}
        for term in X.columns:
            x = X[term].to_numpy(dtype=float)
            ok = usable & ~np.isnan(x)
            mt, vt, mc, vc = _group_moments(x[ok], treated[ok], w[ok])
            after[term] = (mt - mc, vt, vc)
        return after

    # ── Passes ────────────────────────────────────────────────────────────────

    def unadjusted(self, before: pd.DataFrame) -> BalanceTable:
        """(a) Unadjusted comparison; the after columns repeat the before columns."""
        return self._assemble(before, self._weighted_after(before, np.ones(len(before)), None), "unadjusted")

    def matched(self, before: pd.DataFrame, matched: pd.DataFrame) -> BalanceTable:
        """(b) Balance in a matched subsample."""
        after = self._weighted_after(matched, np.ones(len(matched)), self._terms.levels(before))
        return self._assemble(before, after, "matched")

    def weighted(self, before: pd.DataFrame, data: pd.DataFrame, weights, kind: str = "weighted") -> BalanceTable:
        """(c) Balance after weighting ``data``; units with ``NaN`` weight are ignored."""
        return self._assemble(before, self._weighted_after(data, weights, self._terms.levels(before)), kind)

    def stratified(self, before: pd.DataFrame, data: pd.DataFrame, strata) -> BalanceTable:
        """
        (d) Balance pooled over strata.

        Within-stratum mean differences and group variances are averaged with
        weights proportional to stratum size. Strata lacking either group
        cannot contribute a difference and are left out of the pool; their
        count is logged.
        """
        X, treated = self._design(data, self._terms.levels(before))
        labels = np.asarray(strata)
        if len(labels) != len(data):
            raise ValueError("strata must be aligned with data.")

        usable = [
            s for s in sorted(pd.unique(labels).tolist())
            if treated[labels == s].any() and (~treated[labels == s]).any()
        ]
        n_skipped = len(pd.unique(labels)) - len(usable)
        if n_skipped:
            logger.warning("%d strata lack a treatment group and are left out of pooled balance", n_skipped)
        if not usable:
            raise ValueError("No stratum contains both treated and control units.")

        sizes = np.array([(labels == s).sum() for s in usable], dtype=float)
        share = sizes / sizes.sum()

        after = {}
        for term in X.columns:
            x = X[term].to_numpy(dtype=float)
            diffs, vts, vcs = [], [], []
            for s in usable:
                in_s = (labels == s) & ~np.isnan(x)
                ones = np.ones(in_s.sum())
                mt, vt, mc, vc = _group_moments(x[in_s], treated[in_s], ones)
                diffs.append(mt - mc)
                vts.append(vt)
                vcs.append(vc)
            # Single-unit cells have no variance; pool over the strata that do.
            vts, vcs = np.array(vts), np.array(vcs)
            after[term] = (
                float(np.sum(share * np.array(diffs))),
                _nan_weighted_mean(vts, share),
                _nan_weighted_mean(vcs, share),
            )
        return self._assemble(before, after, "stratified")


def _nan_weighted_mean(values: np.ndarray, weights: np.ndarray) -> float:
    ok = ~np.isnan(values)
    if not ok.any():
        return float("nan")
    return float(np.sum(values[ok] * weights[ok]) / np.sum(weights[ok]))

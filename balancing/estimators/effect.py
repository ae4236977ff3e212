from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field

import numpy as np
import pandas as pd
import statsmodels.api as sm

from .._assumptions import Assumption, untested
from .._exceptions import SingularDesignError
from ..terms import CONST, TermSet, check_rank

logger = logging.getLogger(__name__)

_REFERENCE_SD = ("control", "residual")
_STRATUM_PREFIX = "stratum"


# ── Result ─────────────────────────────────────────────────────────────────────

@dataclass(frozen=True, repr=False)
class EffectResult:
    """
    A treatment-effect estimate in the shape shared by every method.

    ``effect_size`` is ``estimate / reference_sd``; which standard deviation
    was used is recorded in ``reference``. Untested identifying assumptions
    are carried in ``assumptions`` and free-text caveats in ``notes``.
    """

    method: str
    estimand: str
    estimate: float
    std_error: float
    statistic: float
    p_value: float
    effect_size: float
    n_obs: int
    reference_sd: float
    reference: str
    conf_int: tuple[float, float] = (float("nan"), float("nan"))
    assumptions: tuple[Assumption, ...] = field(default=())
    notes: tuple[str, ...] = field(default=())

    def to_dict(self) -> dict:
        """Flat record: method, estimand, estimate, std_error, statistic, p_value, effect_size, ..."""
        d = asdict(self)
        d["conf_low"], d["conf_high"] = d.pop("conf_int")
        d["untested_assumptions"] = "; ".join(untested(self.assumptions))
        d.pop("assumptions")
        d["notes"] = "; ".join(self.notes)
        return d

    def summary(self) -> str:
        lo, hi = self.conf_int
        lines = [
            "",
            f"{self.method} Causal Effect",
            f"  Estimand: {self.estimand}",
            "─" * 54,
            f"  Estimate             : {self.estimate:>10.4f}",
            f"  Std. error           : {self.std_error:>10.4f}",
            f"  Test statistic       : {self.statistic:>10.4f}",
            f"  95% CI               : [{lo:.4f}, {hi:.4f}]",
            f"  p-value              : {self.p_value:>10.4f}",
            f"  Effect size          : {self.effect_size:>10.4f}  (÷ {self.reference} SD = {self.reference_sd:.4f})",
            f"  Observations         : {self.n_obs:>10d}",
        ]
        if self.notes:
            lines.append("")
            lines.extend(f"  Note: {n}" for n in self.notes)
        if self.assumptions:
            lines += ["", "  Assumptions", "  " + "┄" * 48]
            lines.extend(f"  {a.fmt_tag()}  {a.name}" for a in self.assumptions)
        lines.append("")
        return "\n".join(lines)

    def __repr__(self) -> str:
        return self.summary()


def summarize(results) -> pd.DataFrame:
    """Concatenate ``EffectResult`` records into one comparison dataframe."""
    return pd.DataFrame([r.to_dict() for r in results])


# ── Shared helpers ─────────────────────────────────────────────────────────────

def _is_binary(t: np.ndarray) -> bool:
    return set(np.unique(t[~np.isnan(t)]).tolist()) <= {0.0, 1.0}


def resolve_reference_sd(y: np.ndarray, t: np.ndarray, residual_scale: float, reference) -> tuple[float, str]:
    """
    Resolve the standard deviation an estimate is divided by.

    ``"control"``: outcome SD among controls (all units when treatment is
    not binary); ``"residual"``: residual SD of the fitted regression; a
    number is used as given.
    """
    if isinstance(reference, (int, float)) and not isinstance(reference, bool):
        return float(reference), "declared"
    if reference == "residual":
        return float(np.sqrt(residual_scale)), "residual"
    if reference == "control":
        if _is_binary(t):
            return float(np.std(y[t == 0], ddof=1)), "control"
        return float(np.std(y, ddof=1)), "outcome"
    raise ValueError(f"reference_sd must be one of {_REFERENCE_SD} or a number; got {reference!r}.")


def _effect_size(estimate: float, sd: float) -> float:
    if not np.isfinite(sd) or sd == 0:
        return float("nan")
    return estimate / sd


def result_from_fit(
    fit,
    position: int,
    y: np.ndarray,
    t: np.ndarray,
    method: str,
    estimand: str,
    reference,
    assumptions=(),
    notes=(),
) -> EffectResult:
    """Build an ``EffectResult`` from the coefficient at ``position`` of a statsmodels fit."""
    params = np.asarray(fit.params, dtype=float)
    bse = np.asarray(fit.bse, dtype=float)
    stats = np.asarray(fit.tvalues, dtype=float)
    pvals = np.asarray(fit.pvalues, dtype=float)
    ci = np.asarray(fit.conf_int(), dtype=float)

    sd, ref_name = resolve_reference_sd(y, t, float(fit.scale), reference)
    estimate = float(params[position])
    return EffectResult(
        method=method,
        estimand=estimand,
        estimate=estimate,
        std_error=float(bse[position]),
        statistic=float(stats[position]),
        p_value=float(pvals[position]),
        effect_size=_effect_size(estimate, sd),
        n_obs=int(fit.nobs),
        reference_sd=sd,
        reference=ref_name,
        conf_int=(float(ci[position, 0]), float(ci[position, 1])),
        assumptions=tuple(assumptions),
        notes=tuple(notes),
    )


# ── Estimator ──────────────────────────────────────────────────────────────────

class EffectEstimator:
    """
    Covariate-adjusted, optionally weighted or stratified, linear regression
    estimate of a treatment effect.

    Fits ``outcome ~ treatment + terms [+ stratum indicators]`` by weighted
    least squares and reports the treatment coefficient.

    Parameters
    ----------
    terms : TermSet
        Adjustment terms, including any declared interactions.
    outcome : str
        Outcome column.
    treatment : str
        Binary treatment column.
    reference_sd : {"control", "residual"} or float
        Denominator of the standardized effect size. Default: control-group
        outcome SD.

    Example::

        est = EffectEstimator(terms, outcome="score", treatment="enrolled")
        result = est.fit(data, weights=w, method="IPTW", estimand="ATE")
        print(result.summary())
    """

    def __init__(self, terms: TermSet, outcome: str, treatment: str, reference_sd="control") -> None:
        if outcome == treatment:
            raise ValueError("Treatment and outcome must be different variables.")
        if treatment in terms.covariates or outcome in terms.covariates:
            raise ValueError("Treatment and outcome cannot also be adjustment terms.")
        if isinstance(reference_sd, str):
            if reference_sd not in _REFERENCE_SD:
                raise ValueError(
                    f"reference_sd must be one of {_REFERENCE_SD} or a number; got {reference_sd!r}."
                )
        elif isinstance(reference_sd, bool) or not isinstance(reference_sd, (int, float)):
            raise ValueError(f"reference_sd must be one of {_REFERENCE_SD} or a number; got {reference_sd!r}.")
        elif not reference_sd > 0:
            raise ValueError(f"A numeric reference_sd must be positive; got {reference_sd}.")
        self._terms = terms
        self._outcome = outcome
        self._treatment = treatment
        self._reference_sd = reference_sd

    def _design(self, data: pd.DataFrame, strata) -> pd.DataFrame:
        X = pd.concat(
            [
                pd.DataFrame({CONST: 1.0, self._treatment: data[self._treatment].astype(float)}, index=data.index),
                self._terms.design(data, constant=False),
            ],
            axis=1,
        )
        if strata is None:
            return X

        labels = pd.Series(np.asarray(strata), index=data.index)
        t = data[self._treatment].to_numpy()
        single = [
            s for s in sorted(labels.unique().tolist())
            if len(np.unique(t[labels.to_numpy() == s])) < 2
        ]
        if single:
            raise SingularDesignError(
                f"Strata {single} contain only one treatment level; their indicators "
                f"are collinear with treatment. Drop those strata or use fewer strata.",
                terms=tuple(f"{_STRATUM_PREFIX}[{s}]" for s in single),
            )
        levels = sorted(labels.unique().tolist())
        dummies = pd.DataFrame(
            {f"{_STRATUM_PREFIX}[{s}]": (labels == s).astype(float) for s in levels[1:]},
            index=data.index,
        )
        return pd.concat([X, dummies], axis=1)

    def fit(
        self,
        data: pd.DataFrame,
        weights=None,
        strata=None,
        method: str = "OLS",
        estimand: str = "ATE",
        assumptions=(),
        notes=(),
    ) -> EffectResult:
        """
        Estimate the treatment effect on ``data``.

        Parameters
        ----------
        data : pd.DataFrame
            Outcome, treatment and term columns.
        weights : array-like, optional
            Row weights aligned with ``data``. Default: 1 for every row.
        strata : array-like, optional
            Stratum labels aligned with ``data``; adds stratum indicators.
        method, estimand : str
            Labels recorded on the result.

        Raises
        ------
        ``SingularDesignError``
            If the design is rank-deficient, or a stratum holds only one
            treatment level.
        ``ValueError``
            On missing columns, missing values, or invalid weights.
        """
        for label, var in [("Treatment", self._treatment), ("Outcome", self._outcome)]:
            if var not in data.columns:
                raise ValueError(f"{label} column '{var}' not found in dataframe.")

        X = self._design(data, strata)
        y = data[self._outcome].astype(float)
        n_missing = int((X.isna().any(axis=1) | y.isna()).sum())
        if n_missing:
            raise ValueError(
                f"{n_missing} rows have missing outcome or covariate values; "
                f"drop or impute them before estimation."
            )

        w = np.ones(len(data)) if weights is None else np.asarray(weights, dtype=float)
        if len(w) != len(data):
            raise ValueError("weights must be aligned with data.")
        if np.isnan(w).any() or (w < 0).any() or not np.isfinite(w).all():
            raise ValueError("weights must be finite and non-negative; exclude undefined weights first.")

        check_rank(X)
        fit = sm.WLS(y, X, weights=w).fit()
        logger.debug("%s regression coefficients: %s", method, dict(zip(X.columns, np.asarray(fit.params))))

        result = result_from_fit(
            fit,
            position=1,
            y=y.to_numpy(),
            t=data[self._treatment].to_numpy(dtype=float),
            method=method,
            estimand=estimand,
            reference=self._reference_sd,
            assumptions=assumptions,
            notes=notes,
        )
        logger.info(
            "%s %s = %.4f (SE %.4f, n = %d)",
            method, estimand, result.estimate, result.std_error, result.n_obs,
        )
        return result


def stratum_effects(
    data: pd.DataFrame,
    outcome: str,
    treatment: str,
    strata,
    terms: TermSet | None = None,
    reference_sd="control",
    n_strata: int | None = None,
) -> pd.DataFrame:
    """
    Treatment-effect estimate within each stratum.

    One row per stratum label, sorted: ``stratum, n, n_treated, n_control,
    estimate, std_error, p_value, effect_size, note``. Strata where no
    estimate can be formed (a missing group, a collinear design) keep their
    row with ``NaN`` estimates and the reason in ``note``.

    With ``n_strata`` the rows cover every label ``1..n_strata``, so strata
    left empty by equal-width binning appear with ``n = 0``.
    """
    terms = terms if terms is not None else TermSet()
    estimator = EffectEstimator(terms, outcome, treatment, reference_sd=reference_sd)
    labels = np.asarray(strata)
    if n_strata is None:
        wanted = sorted(pd.unique(labels).tolist())
    else:
        wanted = list(range(1, n_strata + 1))

    rows = []
    for s in wanted:
        cell = data.loc[labels == s]
        n_t = int((cell[treatment] == 1).sum())
        row = {
            "stratum": s, "n": len(cell), "n_treated": n_t, "n_control": len(cell) - n_t,
            "estimate": np.nan, "std_error": np.nan, "p_value": np.nan,
            "effect_size": np.nan, "note": "",
        }
        if len(cell) == 0:
            row["note"] = "empty stratum"
        elif n_t == 0 or n_t == len(cell):
            row["note"] = "no treated units" if n_t == 0 else "no control units"
        else:
            try:
                r = estimator.fit(cell, method=f"stratum {s}", estimand="ATE")
            except SingularDesignError as exc:
                row["note"] = str(exc)
            else:
                row.update(estimate=r.estimate, std_error=r.std_error,
                           p_value=r.p_value, effect_size=r.effect_size)
        rows.append(row)
    return pd.DataFrame(rows)

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass

import numpy as np
import pandas as pd
import scipy.stats as st
import statsmodels.api as sm
from statsmodels.sandbox.regression.gmm import IV2SLS as _IV2SLS

from .._assumptions import IV_ASSUMPTIONS
from .._exceptions import WeakInstrumentWarning
from ..terms import CONST, TermSet, check_rank
from .effect import EffectResult, result_from_fit

logger = logging.getLogger(__name__)

WEAK_INSTRUMENT_F = 10.0
_FIRST_STAGE_RESID = "_first_stage_resid"


@dataclass(frozen=True)
class DiagnosticTest:
    """A named test statistic with its p-value; ``NaN`` with a ``note`` when not applicable."""

    name: str
    statistic: float
    p_value: float
    df: tuple[float, ...]
    note: str = ""

    @property
    def applicable(self) -> bool:
        return bool(np.isfinite(self.statistic))

    def fmt(self) -> str:
        if not self.applicable:
            return f"{self.name}: not applicable ({self.note})"
        df = ", ".join(f"{d:g}" for d in self.df)
        return f"{self.name}: {self.statistic:.4f}  (df = {df}, p = {self.p_value:.4f})"


@dataclass(frozen=True)
class FirstStage:
    """First-stage regression of treatment on the instruments and covariates."""

    f_statistic: float
    p_value: float
    df_num: int
    df_denom: float
    coefficients: dict
    threshold: float

    @property
    def weak(self) -> bool:
        return self.f_statistic < self.threshold


class IVResult:
    """
    The result of a two-stage least squares estimation.

    The point estimate alone is not a sufficient result: every ``IVResult``
    carries the first-stage F, the Sargan overidentification test, and the
    Wu-Hausman endogeneity test, plus the plain covariate-adjusted OLS
    estimate it is compared against.
    """

    def __init__(
        self,
        effect: EffectResult,
        first_stage: FirstStage,
        overidentification: DiagnosticTest,
        endogeneity: DiagnosticTest,
        ols_effect: EffectResult,
        instruments: tuple[str, ...],
    ) -> None:
        self._effect = effect
        self._first_stage = first_stage
        self._overid = overidentification
        self._endog = endogeneity
        self._ols = ols_effect
        self._instruments = instruments

    @property
    def effect(self) -> EffectResult:
        """2SLS estimate in the shared ``EffectResult`` shape."""
        return self._effect

    @property
    def first_stage(self) -> FirstStage:
        return self._first_stage

    @property
    def overidentification(self) -> DiagnosticTest:
        return self._overid

    @property
    def endogeneity(self) -> DiagnosticTest:
        return self._endog

    @property
    def ols_effect(self) -> EffectResult:
        """Covariate-adjusted OLS estimate, not instrumented."""
        return self._ols

    @property
    def weak_instrument(self) -> bool:
        return self._first_stage.weak

    @property
    def instruments(self) -> tuple[str, ...]:
        return self._instruments

    def summary(self) -> str:
        fs = self._first_stage
        lines = [
            self._effect.summary().rstrip("\n"),
            "",
            f"  Instruments          : {', '.join(self._instruments)}",
            f"  First-stage F        : {fs.f_statistic:>10.4f}  (threshold: F ≥ {fs.threshold:.0f})"
            + ("  WEAK INSTRUMENT" if fs.weak else ""),
            f"  OLS estimate         : {self._ols.estimate:>10.4f}  (not instrumented)",
            f"  {self._overid.fmt()}",
            f"  {self._endog.fmt()}",
            "",
        ]
        return "\n".join(lines)

    def __repr__(self) -> str:
        return self.summary()


class InstrumentalVariableEstimator:
    """
    Instrumental variables estimator using two-stage least squares (2SLS).

    1. **First stage**: OLS of the endogenous treatment on the instruments
       and covariate terms; the partial F-statistic of the instruments
       measures their strength. ``F < 10`` issues ``WeakInstrumentWarning``
       and flags the result, but the estimate is still returned.
    2. **Second stage**: 2SLS of the outcome on treatment and the covariate
       terms, with the instruments standing in for treatment.
    3. **Diagnostics**, always computed: Sargan overidentification test
       (requires more instruments than endogenous regressors; reported as not
       applicable otherwise) and the Wu-Hausman endogeneity test comparing
       the IV estimate with plain covariate-adjusted OLS.

    Parameters
    ----------
    terms : TermSet
        Exogenous covariate terms, included in both stages.
    outcome, treatment : str
        Outcome and endogenous treatment columns.
    instruments : sequence of str
        Instrument columns; at least one.
    weak_threshold : float
        First-stage F threshold. Default 10.
    reference_sd : {"control", "residual"} or float
        Denominator of the standardized effect size.
    """

    def __init__(
        self,
        terms: TermSet,
        outcome: str,
        treatment: str,
        instruments,
        weak_threshold: float = WEAK_INSTRUMENT_F,
        reference_sd="control",
    ) -> None:
        instruments = tuple(instruments)
        if not instruments:
            raise ValueError("At least one instrument is required.")
        if treatment == outcome:
            raise ValueError("Treatment and outcome must be different variables.")
        for z in instruments:
            if z in (treatment, outcome):
                raise ValueError(f"Instrument '{z}' must differ from treatment and outcome.")
            if z in terms.covariates:
                raise ValueError(f"Instrument '{z}' cannot also be a covariate.")
        self._terms = terms
        self._outcome = outcome
        self._treatment = treatment
        self._instruments = instruments
        self._weak_threshold = weak_threshold
        self._reference_sd = reference_sd

    def fit(self, data: pd.DataFrame) -> IVResult:
        """
        Run both stages and the diagnostics on ``data``.

        Raises
        ------
        ``SingularDesignError``
            If either stage's design is rank-deficient.
        ``ValueError``
            On missing columns or missing values.
        """
        T, Y = self._treatment, self._outcome
        for label, var in [("Treatment", T), ("Outcome", Y)] + [("Instrument", z) for z in self._instruments]:
            if var not in data.columns:
                raise ValueError(f"{label} column '{var}' not found in dataframe.")

        covs = self._terms.design(data, constant=False)
        const = pd.DataFrame({CONST: 1.0}, index=data.index)
        # exog:       [const, T, covariates]
        # instrument: [const, Z..., covariates]
        X = pd.concat([const, data[[T]].astype(float), covs], axis=1)
        Z = pd.concat([const, data[list(self._instruments)].astype(float), covs], axis=1)
        y = data[Y].astype(float)

        n_missing = int((X.isna().any(axis=1) | Z.isna().any(axis=1) | y.isna()).sum())
        if n_missing:
            raise ValueError(
                f"{n_missing} rows have missing values in outcome, treatment, "
                f"instruments or covariates; drop or impute them first."
            )
        check_rank(X)
        check_rank(Z)

        first_stage, fs_fit = self._first_stage(data[T].astype(float), Z)
        if first_stage.weak:
            msg = (
                f"First-stage F = {first_stage.f_statistic:.2f} is below "
                f"{first_stage.threshold:.0f}: weak instrument(s) {list(self._instruments)}. "
                f"The IV estimate may be badly biased and its confidence interval unreliable."
            )
            logger.warning(msg)
            warnings.warn(msg, WeakInstrumentWarning, stacklevel=2)

        iv_fit = _IV2SLS(endog=y, exog=X, instrument=Z).fit()
        t_arr = data[T].to_numpy(dtype=float)
        notes = []
        if first_stage.weak:
            notes.append("Weak instrument: first-stage F below threshold; low-confidence estimate.")
        effect = result_from_fit(
            iv_fit, position=1, y=y.to_numpy(), t=t_arr,
            method="IV", estimand="LATE", reference=self._reference_sd,
            assumptions=IV_ASSUMPTIONS, notes=notes,
        )

        ols_fit = sm.OLS(y, X).fit()
        ols_effect = result_from_fit(
            ols_fit, position=1, y=y.to_numpy(), t=t_arr,
            method="OLS", estimand="ATE", reference=self._reference_sd,
        )

        resid = y.to_numpy() - X.to_numpy() @ np.asarray(iv_fit.params, dtype=float)
        overid = self._sargan(resid, Z)
        endog = self._wu_hausman(y, X, np.asarray(fs_fit.resid, dtype=float))

        logger.info(
            "IV estimate %.4f (SE %.4f) vs OLS %.4f; first-stage F %.2f",
            effect.estimate, effect.std_error, ols_effect.estimate, first_stage.f_statistic,
        )
        return IVResult(effect, first_stage, overid, endog, ols_effect, self._instruments)

    def _first_stage(self, t: pd.Series, Z: pd.DataFrame) -> tuple[FirstStage, object]:
        fit = sm.OLS(t, Z).fit()
        # Partial F: H0 all instrument coefficients are zero, covariates kept.
        R = np.zeros((len(self._instruments), Z.shape[1]))
        for i, z in enumerate(self._instruments):
            R[i, list(Z.columns).index(z)] = 1.0
        test = fit.f_test(R)
        first = FirstStage(
            f_statistic=float(np.squeeze(test.fvalue)),
            p_value=float(np.squeeze(test.pvalue)),
            df_num=int(test.df_num),
            df_denom=float(test.df_denom),
            coefficients={z: float(fit.params[z]) for z in self._instruments},
            threshold=self._weak_threshold,
        )
        return first, fit

    def _sargan(self, resid: np.ndarray, Z: pd.DataFrame) -> DiagnosticTest:
        df = len(self._instruments) - 1
        if df == 0:
            return DiagnosticTest(
                name="Sargan overidentification",
                statistic=float("nan"),
                p_value=float("nan"),
                df=(0,),
                note="exactly identified: one instrument for one endogenous regressor",
            )
        aux = sm.OLS(resid, Z.to_numpy()).fit()
        stat = len(resid) * float(aux.rsquared)
        return DiagnosticTest(
            name="Sargan overidentification",
            statistic=stat,
            p_value=float(st.chi2.sf(stat, df)),
            df=(df,),
        )

    def _wu_hausman(self, y: pd.Series, X: pd.DataFrame, first_stage_resid: np.ndarray) -> DiagnosticTest:
        # Control-function form: with one endogenous regressor the F is the
        # squared t-statistic of the first-stage residual.
        aug = X.assign(**{_FIRST_STAGE_RESID: first_stage_resid})
        fit = sm.OLS(y, aug).fit()
        t_stat = float(fit.tvalues[_FIRST_STAGE_RESID])
        df_denom = float(fit.df_resid)
        stat = t_stat ** 2
        return DiagnosticTest(
            name="Wu-Hausman endogeneity",
            statistic=stat,
            p_value=float(st.f.sf(stat, 1, df_denom)),
            df=(1, df_denom),
        )

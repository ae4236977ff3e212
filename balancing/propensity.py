from __future__ import annotations

import logging

import numpy as np
import pandas as pd
import statsmodels.api as sm

from ._exceptions import SingularDesignError
from .table import CovariateTable
from .terms import TermSet, check_rank

logger = logging.getLogger(__name__)


def logit_to_probability(logit) -> np.ndarray:
    """Inverse of the logit transform: ``p = 1 / (1 + exp(-logit))``."""
    return 1.0 / (1.0 + np.exp(-np.asarray(logit, dtype=float)))


def probability_to_logit(p) -> np.ndarray:
    """``ln(p / (1 - p))``; infinite for scores of exactly 0 or 1."""
    p = np.asarray(p, dtype=float)
    with np.errstate(divide="ignore"):
        return np.log(p) - np.log1p(-p)


class PropensityFit:
    """
    A fitted propensity model: the logistic regression coefficients and the
    terms they belong to. Holds no reference to the data it was fitted on.
    """

    def __init__(self, terms: TermSet, params: pd.Series, result, levels=None) -> None:
        self._terms = terms
        self._levels = dict(levels or {})
        self._params = params
        self._result = result

    @property
    def terms(self) -> TermSet:
        return self._terms

    @property
    def levels(self) -> dict[str, tuple]:
        """Categorical levels fixed at fit time, reference level first."""
        return dict(self._levels)

    @property
    def params(self) -> pd.Series:
        """Logistic regression coefficients, indexed by design column."""
        return self._params.copy()

    @property
    def statsmodels_result(self):
        """The underlying statsmodels Logit result, for full diagnostics."""
        return self._result

    def score(self, data: pd.DataFrame) -> pd.DataFrame:
        """
        Score units with the fitted model.

        Returns a dataframe indexed like ``data`` with columns ``logit`` (the
        linear predictor) and ``probability`` (its inverse-logit transform),
        so the two always round-trip. Categorical covariates are coded with
        the levels seen at fit time, so any subset scores the same as it does
        inside the full frame.

        Raises
        ------
        ``ValueError``
            If any covariate used by the model is missing for a unit, or a
            categorical covariate holds a level the model never saw.
        """
        X = self._terms.design(data, levels=self._levels)
        X = X[self._params.index]
        n_missing = int(X.isna().any(axis=1).sum())
        if n_missing:
            raise ValueError(
                f"{n_missing} units have missing covariate values; "
                f"drop or impute them before scoring."
            )
        logit = X.to_numpy(dtype=float) @ self._params.to_numpy(dtype=float)
        return pd.DataFrame(
            {"logit": logit, "probability": logit_to_probability(logit)},
            index=data.index,
        )

    def __repr__(self) -> str:
        return f"PropensityFit(terms={self._terms.names})"


class PropensityModel:
    """
    Logistic regression of treatment on an explicit set of terms.

    Example::

        terms = TermSet(["age", "income"], interactions=[("age", "income")])
        fit = PropensityModel(terms).fit(table)
        scores = fit.score(table.data)   # columns: logit, probability

    Interaction terms are never discovered automatically; pass the pairs
    flagged by ``screen_interactions()`` (or any other reviewed list).
    """

    def __init__(self, terms: TermSet) -> None:
        self._terms = terms

    @property
    def terms(self) -> TermSet:
        return self._terms

    def fit(self, table: CovariateTable) -> PropensityFit:
        """
        Fit ``treatment ~ terms`` by maximum likelihood.

        Raises
        ------
        ``SingularDesignError``
            If the design matrix is rank-deficient.
        ``ValueError``
            If covariates have missing values.
        """
        data = table.data
        levels = self._terms.levels(data)
        X = self._terms.design(data, levels=levels)
        n_missing = int(X.isna().any(axis=1).sum())
        if n_missing:
            raise ValueError(
                f"{n_missing} units have missing covariate values; use "
                f"CovariateTable.complete_cases() or impute before fitting."
            )
        check_rank(X)

        y = data[table.roles.treatment].astype(float)
        try:
            result = sm.Logit(y, X).fit(disp=0)
        except np.linalg.LinAlgError as exc:
            raise SingularDesignError(
                f"Propensity model could not be fitted: {exc}",
                terms=tuple(self._terms.names),
            ) from exc

        params = pd.Series(np.asarray(result.params, dtype=float), index=X.columns)
        logger.debug("Propensity model coefficients: %s", params.to_dict())
        logger.info(
            "Fitted propensity model on %d units (%d treated) with %d design columns",
            len(table), table.n_treated, X.shape[1],
        )
        return PropensityFit(self._terms, params, result, levels)

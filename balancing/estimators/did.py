from __future__ import annotations

import logging

import pandas as pd
import statsmodels.api as sm

from .._assumptions import DID_ASSUMPTIONS
from ..terms import CONST, check_rank
from .effect import EffectResult, result_from_fit

logger = logging.getLogger(__name__)

PERIOD = "period"
GROUP = "group"
OUTCOME = "outcome"
INTERACTION = f"{PERIOD}:{GROUP}"

_COV_TYPES = ("nonrobust", "HC1", "cluster")

PARALLEL_TRENDS_NOTE = (
    "Parallel trends is an identifying assumption; it is not tested by this design."
)


def to_long(
    data: pd.DataFrame,
    unit_id: str,
    group: str,
    pre_outcome: str,
    post_outcome: str,
) -> pd.DataFrame:
    """
    Reshape one row per unit (pre and post outcome columns) into one row per
    unit per period.

    Returns columns ``unit_id, period (0 = pre, 1 = post), group, outcome``,
    sorted by unit then period.
    """
    for label, var in [
        ("Unit id", unit_id),
        ("Group", group),
        ("Pre-period outcome", pre_outcome),
        ("Post-period outcome", post_outcome),
    ]:
        if var not in data.columns:
            raise ValueError(f"{label} column '{var}' not found in dataframe.")

    if unit_id in (PERIOD, GROUP, OUTCOME):
        raise ValueError(f"Unit id column cannot be named '{unit_id}' (reserved in long form).")

    wide = data[[unit_id, group, pre_outcome, post_outcome]].rename(
        columns={pre_outcome: "_pre", post_outcome: "_post", group: GROUP}
    )
    long = wide.melt(
        id_vars=[unit_id, GROUP], value_vars=["_pre", "_post"],
        var_name=PERIOD, value_name=OUTCOME,
    )
    long[PERIOD] = long[PERIOD].map({"_pre": 0, "_post": 1}).astype(int)
    long = long.sort_values([unit_id, PERIOD], kind="mergesort").reset_index(drop=True)
    return long[[unit_id, PERIOD, GROUP, OUTCOME]]


class DIDEstimator:
    """
    Difference-in-Differences estimator for two outcome measurements per unit.

    Each unit's pre- and post-period outcomes are reshaped to long form and
    fitted by OLS with period and group main effects plus their interaction::

        outcome ~ period + group + period:group

    The coefficient on ``period:group`` is the ATT under parallel trends.
    Parallel trends is not tested; every result says so in its assumptions
    and notes.

    Parameters
    ----------
    unit_id, group : str
        Unit identifier and binary treatment-group columns.
    pre_outcome, post_outcome : str
        Outcome measured before and after treatment.
    cov_type : {"nonrobust", "HC1", "cluster"}
        Standard-error type. ``"cluster"`` clusters on unit, accounting for
        the two observations each unit contributes.
    reference_sd : {"control", "residual"} or float
        Denominator of the standardized effect size; ``"control"`` uses the
        post-period outcome SD of the control group.
    """

    def __init__(
        self,
        unit_id: str,
        group: str,
        pre_outcome: str,
        post_outcome: str,
        cov_type: str = "nonrobust",
        reference_sd="control",
    ) -> None:
        if len({unit_id, group, pre_outcome, post_outcome}) < 4:
            raise ValueError("Unit id, group, pre and post outcome must be different variables.")
        if cov_type not in _COV_TYPES:
            raise ValueError(f"cov_type must be one of {_COV_TYPES}; got '{cov_type}'.")
        self._unit_id = unit_id
        self._group = group
        self._pre = pre_outcome
        self._post = post_outcome
        self._cov_type = cov_type
        self._reference_sd = reference_sd

    def fit(self, data: pd.DataFrame) -> EffectResult:
        """
        Estimate the ATT.

        Raises
        ------
        ``ValueError``
            If required columns are missing, group is not binary, or
            outcomes are missing.
        """
        long = to_long(data, self._unit_id, self._group, self._pre, self._post)

        vals = set(long[GROUP].dropna().unique())
        if not vals <= {0, 1, 0.0, 1.0}:
            raise ValueError(f"Group '{self._group}' must be binary (0/1). Found: {sorted(vals)}")
        n_missing = int(long[OUTCOME].isna().sum())
        if n_missing:
            raise ValueError(
                f"{n_missing} unit-periods have missing outcomes; drop or impute them first."
            )

        g = long[GROUP].astype(float)
        p = long[PERIOD].astype(float)
        X = pd.DataFrame(
            {CONST: 1.0, PERIOD: p, GROUP: g, INTERACTION: p * g},
            index=long.index,
        )
        check_rank(X)
        y = long[OUTCOME].astype(float)

        if self._cov_type == "cluster":
            codes = pd.factorize(long[self._unit_id])[0]
            fit = sm.OLS(y, X).fit(cov_type="cluster", cov_kwds={"groups": codes})
        else:
            fit = sm.OLS(y, X).fit(cov_type=self._cov_type)

        post = (long[PERIOD] == 1).to_numpy()
        notes = [PARALLEL_TRENDS_NOTE]
        if self._cov_type != "nonrobust":
            notes.append(f"Standard errors: {self._cov_type}.")
        result = result_from_fit(
            fit,
            position=list(X.columns).index(INTERACTION),
            y=y.to_numpy()[post],
            t=g.to_numpy()[post],
            method="DID",
            estimand="ATT",
            reference=self._reference_sd,
            assumptions=DID_ASSUMPTIONS,
            notes=notes,
        )
        logger.info(
            "DID ATT = %.4f (SE %.4f) over %d units; parallel trends assumed",
            result.estimate, result.std_error, len(data),
        )
        return result

from __future__ import annotations

from dataclasses import dataclass

from .estimators.did import _COV_TYPES
from .estimators.iv import WEAK_INSTRUMENT_F
from .matching import _MATCH_ON
from .strata import DEFAULT_N_STRATA, _MODES
from .support import DEFAULT_CALIPER


@dataclass(frozen=True)
class AnalysisConfig:
    """
    Tuning knobs for ``CausalAnalysis``. Column roles live in ``Roles``.

    caliper
        Fraction of the logit-score SD added to each common-support bound.
    n_strata, strata_mode
        Number of propensity strata and ``"quantile"`` or ``"width"`` binning.
    match_on
        ``"logit"`` or ``"probability"``.
    reference_sd
        Effect-size denominator: ``"control"``, ``"residual"`` or a number.
    weak_instrument_threshold
        First-stage F below which the IV result is flagged.
    did_cov_type
        Standard errors for DID: ``"nonrobust"``, ``"HC1"`` or ``"cluster"``.
    strict_weights
        Raise instead of excluding units with undefined MMWS weights.
    """

    caliper: float = DEFAULT_CALIPER
    n_strata: int = DEFAULT_N_STRATA
    strata_mode: str = "quantile"
    match_on: str = "logit"
    reference_sd: object = "control"
    weak_instrument_threshold: float = WEAK_INSTRUMENT_F
    did_cov_type: str = "nonrobust"
    strict_weights: bool = False

    def __post_init__(self) -> None:
        if self.caliper < 0:
            raise ValueError(f"caliper must be non-negative; got {self.caliper}.")
        if self.n_strata < 1:
            raise ValueError(f"n_strata must be at least 1; got {self.n_strata}.")
        if self.strata_mode not in _MODES:
            raise ValueError(f"strata_mode must be one of {_MODES}; got '{self.strata_mode}'.")
        if self.match_on not in _MATCH_ON:
            raise ValueError(f"match_on must be one of {_MATCH_ON}; got '{self.match_on}'.")
        if self.did_cov_type not in _COV_TYPES:
            raise ValueError(f"did_cov_type must be one of {_COV_TYPES}; got '{self.did_cov_type}'.")
        if isinstance(self.reference_sd, str):
            if self.reference_sd not in ("control", "residual"):
                raise ValueError(
                    f"reference_sd must be 'control', 'residual' or a number; got '{self.reference_sd}'."
                )
        elif isinstance(self.reference_sd, bool) or not self.reference_sd > 0:
            raise ValueError(f"A numeric reference_sd must be positive; got {self.reference_sd}.")
        if self.weak_instrument_threshold <= 0:
            raise ValueError("weak_instrument_threshold must be positive.")

from ._assumptions import Assumption
from ._exceptions import (
    DegenerateWeightError,
    InsufficientCommonSupportError,
    SingularDesignError,
    WeakInstrumentWarning,
)
from .table import CovariateTable, Roles
from .terms import TermSet, check_rank, screen_interactions
from .propensity import PropensityFit, PropensityModel, logit_to_probability, probability_to_logit
from .support import CommonSupport, common_support
from .matching import MatchedPair, Matcher, MatchResult
from .weighting import MMWSWeights, iptw_weights, mmws_weights
from .strata import Stratification, Stratifier, stratum_diagnostics
from .balance import BalanceDiagnostics, BalanceTable
from .estimators import (
    DIDEstimator,
    EffectEstimator,
    EffectResult,
    InstrumentalVariableEstimator,
    IVResult,
    stratum_effects,
    summarize,
    to_long,
)
from .config import AnalysisConfig
from .analysis import AnalysisReport, CausalAnalysis

__all__ = [
    "Roles", "CovariateTable",
    "TermSet", "check_rank", "screen_interactions",
    "PropensityModel", "PropensityFit", "logit_to_probability", "probability_to_logit",
    "common_support", "CommonSupport",
    "Matcher", "MatchResult", "MatchedPair",
    "iptw_weights", "mmws_weights", "MMWSWeights",
    "Stratifier", "Stratification", "stratum_diagnostics",
    "BalanceDiagnostics", "BalanceTable",
    "EffectEstimator", "EffectResult", "summarize", "stratum_effects",
    "InstrumentalVariableEstimator", "IVResult",
    "DIDEstimator", "to_long",
    "AnalysisConfig", "CausalAnalysis", "AnalysisReport",
    "SingularDesignError", "DegenerateWeightError", "InsufficientCommonSupportError", "WeakInstrumentWarning",
    "Assumption",
]

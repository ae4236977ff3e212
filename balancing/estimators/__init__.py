from .effect import EffectEstimator, EffectResult, stratum_effects, summarize
from .iv import InstrumentalVariableEstimator, IVResult
from .did import DIDEstimator, to_long

__all__ = [
    "EffectEstimator", "EffectResult", "stratum_effects", "summarize",
    "InstrumentalVariableEstimator", "IVResult",
    "DIDEstimator", "to_long",
]

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Assumption:
    """
    An identifying assumption attached to an ``EffectResult``.

    ``testable`` says whether the data can speak to it (overlap, balance,
    instrument relevance) or whether it has to be argued from knowledge of
    the study (no unobserved confounding, exclusion, parallel trends).
    """

    name: str
    testable: bool

    def fmt_tag(self) -> str:
        """Fixed-width label used in the assumptions block of ``summary()``."""
        return "[  testable  ]" if self.testable else "[ untestable ]"


def untested(assumptions) -> list[str]:
    """Names of the assumptions that cannot be checked in the data."""
    return [a.name for a in assumptions if not a.testable]


_SUTVA = Assumption("Stable Unit Treatment Value Assumption (SUTVA)", testable=False)

PROPENSITY_ASSUMPTIONS: tuple[Assumption, ...] = (
    Assumption("Conditional independence: no unobserved confounders given the declared terms", testable=False),
    Assumption("Common support: logit scores of both groups overlap", testable=True),
    Assumption("Covariate balance: adjustment removes group differences in the declared terms", testable=True),
    Assumption("Correct specification of the propensity model", testable=False),
    _SUTVA,
)

IV_ASSUMPTIONS: tuple[Assumption, ...] = (
    Assumption("Relevance: the instruments shift treatment (first-stage F)", testable=True),
    Assumption("Exclusion restriction: instruments affect the outcome only through treatment", testable=False),
    Assumption("Independence: instruments are unrelated to unobserved confounders", testable=False),
    Assumption("Monotonicity: no unit is pushed away from treatment by the instruments", testable=False),
)

DID_ASSUMPTIONS: tuple[Assumption, ...] = (
    Assumption(
        "Parallel trends: both groups would have followed the same outcome "
        "trend without treatment (assumed, not tested)",
        testable=False,
    ),
    Assumption("No anticipation: pre-period outcomes are unaffected by the coming treatment", testable=False),
    Assumption("Stable groups: treatment does not change group membership", testable=False),
    _SUTVA,
)

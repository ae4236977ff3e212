"""
Propensity Score Matching — basic example
==========================================
Estimate the ATT of further education on income, adjusting for ability by
matching on the logit propensity score, one component at a time.
"""

import numpy as np
import pandas as pd
from balancing import (
    BalanceDiagnostics,
    CovariateTable,
    EffectEstimator,
    Matcher,
    PropensityModel,
    Roles,
    TermSet,
    common_support,
)

RNG = np.random.default_rng(0)
N = 3_000

# ── 1. Simulate data ──────────────────────────────────────────────────────────
ability   = RNG.normal(size=N)
education = RNG.binomial(1, 1 / (1 + np.exp(-0.8 * ability)))
income    = 2.0 * education + 0.8 * ability + RNG.normal(size=N)

df = pd.DataFrame({"id": np.arange(N), "ability": ability, "education": education, "income": income})

# ── 2. Propensity scores and common support ───────────────────────────────────
roles = Roles(unit_id="id", treatment="education", outcome="income", covariates=("ability",))
table = CovariateTable(df, roles)
terms = TermSet.from_roles(roles)

scores  = PropensityModel(terms).fit(table).score(table.data)
support = common_support(scores["logit"], table.treatment)
print(support.summary())

retained = table.subset(support.in_support.to_numpy())
logit    = scores.loc[support.in_support.to_numpy(), "logit"].to_numpy()

# ── 3. Match and check balance ────────────────────────────────────────────────
match   = Matcher(on="logit").match(retained.ids, logit, retained.treatment)
matched = match.subset(retained)
print(match.summary())
print(BalanceDiagnostics(terms, "education").matched(table.data, matched.data).summary())

# ── 4. Estimate the ATT on the matched sample ─────────────────────────────────
result = EffectEstimator(terms, outcome="income", treatment="education").fit(
    matched.data, method="PSM", estimand="ATT"
)
print(result.summary())

"""
IPTW vs. marginal-mean weighting
================================
Both weightings target the ATE. IPTW uses the propensity score directly;
MMWS coarsens it into strata first, which tames extreme weights.
"""

import numpy as np
import pandas as pd
from balancing import (
    CovariateTable,
    EffectEstimator,
    PropensityModel,
    Roles,
    Stratifier,
    TermSet,
    iptw_weights,
    mmws_weights,
    stratum_diagnostics,
)

RNG = np.random.default_rng(1)
N = 4_000

# ── 1. Simulate data ──────────────────────────────────────────────────────────
x1 = RNG.normal(size=N)
x2 = RNG.normal(size=N)
t  = RNG.binomial(1, 1 / (1 + np.exp(-(-0.3 + 1.2 * x1 - 0.8 * x2))))
y  = 1.0 + 2.0 * t + 1.5 * x1 + x2 + RNG.normal(size=N)

df = pd.DataFrame({"id": np.arange(N), "t": t, "y": y, "x1": x1, "x2": x2})

roles = Roles(unit_id="id", treatment="t", outcome="y", covariates=("x1", "x2"))
table = CovariateTable(df, roles)
terms = TermSet.from_roles(roles)
scores = PropensityModel(terms).fit(table).score(table.data)

# ── 2. Weights ────────────────────────────────────────────────────────────────
iptw = iptw_weights(scores["probability"], table.treatment, ids=table.ids)
strata = Stratifier(n_strata=5).fit(scores["logit"])
mmws = mmws_weights(strata.labels, table.treatment, ids=table.ids)

print(f"IPTW weight range: [{iptw.min():.2f}, {iptw.max():.2f}]")
print(f"MMWS weight range: [{mmws.weights.min():.2f}, {mmws.weights.max():.2f}]")
print(stratum_diagnostics(strata, scores["logit"], table.treatment, table.outcome))

# ── 3. Estimate ───────────────────────────────────────────────────────────────
est = EffectEstimator(terms, outcome="y", treatment="t")
print(est.fit(table.data, weights=iptw.to_numpy(), method="IPTW").summary())
valid = mmws.valid.to_numpy()
print(est.fit(
    table.data.loc[valid], weights=mmws.weights[valid].to_numpy(),
    strata=strata.labels[valid], method="MMWS",
).summary())

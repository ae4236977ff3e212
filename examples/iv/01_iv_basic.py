"""
Instrumental variables — basic example
======================================
Ability confounds education and income and is not observed. Proximity to a
college shifts education but has no direct path to income, so it can serve
as an instrument. The true effect of education is 2.0.
"""

import numpy as np
import pandas as pd
from balancing import InstrumentalVariableEstimator, TermSet

RNG = np.random.default_rng(42)
N = 5_000

# ── 1. Simulate data ──────────────────────────────────────────────────────────
proximity = RNG.normal(size=N)
age       = RNG.normal(size=N)
ability   = RNG.normal(size=N)                              # unobserved
education = 0.5 * proximity + 0.3 * age + 0.5 * ability + RNG.normal(size=N)
income    = 2.0 * education + 0.5 * age + 0.8 * ability + RNG.normal(size=N)

df = pd.DataFrame({"proximity": proximity, "age": age, "education": education, "income": income})

# ── 2. Estimate via 2SLS ──────────────────────────────────────────────────────
result = InstrumentalVariableEstimator(
    TermSet(["age"]), outcome="income", treatment="education", instruments=["proximity"]
).fit(df)

print(result.summary())

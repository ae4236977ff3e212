"""
Basic DiD example: effect of a policy intervention on an outcome.

Each unit is measured once before and once after a policy is introduced
for the treated group. The control group is never treated.

Under parallel trends, DiD removes the baseline difference between
groups and the common time trend, isolating the treatment effect.

The true ATT is 4.0.
"""

import numpy as np
import pandas as pd

from balancing import DIDEstimator

RNG = np.random.default_rng(42)
N = 1_000
TRUE_ATT = 4.0

group = RNG.integers(0, 2, size=N)

# DGP satisfies parallel trends by construction
pre  = 3.0 + 2.0 * group + RNG.normal(size=N)
post = 3.0 + 2.0 * group + 1.5 + TRUE_ATT * group + RNG.normal(size=N)

df = pd.DataFrame({"unit": np.arange(N), "group": group, "pre": pre, "post": post})

result = DIDEstimator("unit", "group", "pre", "post", cov_type="cluster").fit(df)
print(result.summary())

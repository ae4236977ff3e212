"""
Explicit model terms.

Model right-hand sides are declared as a ``TermSet``: an ordered list of
main-effect covariates plus explicit pairwise interactions, parsed and
validated once before any fitting. ``TermSet.design()`` turns a dataframe
into the numeric design matrix used by every regression in the package.
"""
from __future__ import annotations

import itertools
import logging

import numpy as np
import pandas as pd

from ._exceptions import SingularDesignError

logger = logging.getLogger(__name__)

CONST = "const"
_INTERACTION_SEP = ":"

_SCREEN_LOWER = 0.5
_SCREEN_UPPER = 2.0


def _is_categorical(series: pd.Series) -> bool:
    return not pd.api.types.is_numeric_dtype(series) or isinstance(
        series.dtype, pd.CategoricalDtype
    )


def _observed_levels(series: pd.Series) -> tuple:
    levels = sorted(series.dropna().unique().tolist(), key=str)
    if isinstance(series.dtype, pd.CategoricalDtype):
        present = set(levels)
        levels = [lvl for lvl in series.cat.categories if lvl in present]
    return tuple(levels)


def _expand(series: pd.Series, name: str, levels=None) -> pd.DataFrame:
    """
    Main-effect columns for one covariate; categoricals become dummies.

    ``levels`` fixes the coding of a categorical: the first entry is the
    reference and every other entry gets a column, present or not. Values
    outside ``levels`` raise ``ValueError``.
    """
    if levels is None:
        if not _is_categorical(series):
            return pd.DataFrame({name: series.astype(float)}, index=series.index)
        levels = _observed_levels(series)
    else:
        unknown = sorted(set(_observed_levels(series)) - set(levels), key=str)
        if unknown:
            raise ValueError(
                f"Covariate '{name}' has levels {unknown} that were not present "
                f"when its coding was fixed ({list(levels)})."
            )
    # Treatment coding: first level is the reference.
    cols = {
        f"{name}[{lvl}]": (series == lvl).astype(float).where(series.notna())
        for lvl in levels[1:]
    }
    return pd.DataFrame(cols, index=series.index)


class TermSet:
    """
    An ordered, validated set of model terms.

    Parameters
    ----------
    covariates : sequence of str
        Main-effect covariate columns.
    interactions : sequence of (str, str)
        Pairwise interactions between declared covariates. Named ``"a:b"``.

    Raises
    ------
    ``ValueError``
        On duplicate covariates, self-interactions, duplicate interactions,
        or interactions naming undeclared covariates.
    """

    def __init__(self, covariates=(), interactions=()) -> None:
        covariates = tuple(covariates)
        if len(set(covariates)) != len(covariates):
            raise ValueError(f"Duplicate covariates declared: {list(covariates)}")

        parsed: list[tuple[str, str]] = []
        seen: set[frozenset[str]] = set()
        for pair in interactions:
            a, b = pair
            if a == b:
                raise ValueError(f"Self-interaction '{a}{_INTERACTION_SEP}{b}' is not allowed.")
            for var in (a, b):
                if var not in covariates:
                    raise ValueError(
                        f"Interaction '{a}{_INTERACTION_SEP}{b}' names '{var}', "
                        f"which is not a declared covariate."
                    )
            key = frozenset((a, b))
            if key in seen:
                raise ValueError(f"Interaction '{a}{_INTERACTION_SEP}{b}' declared twice.")
            seen.add(key)
            parsed.append((a, b))

        self._covariates = covariates
        self._interactions = tuple(parsed)

    @classmethod
    def from_roles(cls, roles) -> TermSet:
        return cls(roles.covariates, roles.interactions)

    @property
    def covariates(self) -> tuple[str, ...]:
        return self._covariates

    @property
    def interactions(self) -> tuple[tuple[str, str], ...]:
        return self._interactions

    @property
    def names(self) -> list[str]:
        """Declared term names: covariates, then ``"a:b"`` interactions."""
        return list(self._covariates) + [
            f"{a}{_INTERACTION_SEP}{b}" for a, b in self._interactions
        ]

    def __len__(self) -> int:
        return len(self._covariates) + len(self._interactions)

    def __repr__(self) -> str:
        return f"TermSet({self.names})"

    def levels(self, data: pd.DataFrame) -> dict[str, tuple]:
        """
        Levels of every categorical covariate in ``data``, reference first.

        Pass the result back to ``design()`` to code another frame (a subset,
        a matched sample, new units) with the same reference and columns.
        """
        missing = [c for c in self._covariates if c not in data.columns]
        if missing:
            raise ValueError(f"Covariate columns not found in dataframe: {missing}")
        return {
            name: _observed_levels(data[name])
            for name in self._covariates
            if _is_categorical(data[name])
        }

    def design(self, data: pd.DataFrame, constant: bool = True, levels=None) -> pd.DataFrame:
        """
        Build the numeric design matrix for ``data``.

        Columns: ``const`` (if requested), one column per numeric covariate or
        one dummy per non-reference level of a categorical covariate, then
        products for each interaction. Index follows ``data``.

        Without ``levels`` the categorical levels are read from ``data``
        itself. With ``levels`` (from ``TermSet.levels``) the columns are
        those of the frame the levels came from, whatever ``data`` holds.
        """
        missing = [c for c in self._covariates if c not in data.columns]
        if missing:
            raise ValueError(f"Covariate columns not found in dataframe: {missing}")

        fixed = levels or {}
        blocks: dict[str, pd.DataFrame] = {
            name: _expand(data[name], name, fixed.get(name)) for name in self._covariates
        }
        parts = []
        if constant:
            parts.append(pd.DataFrame({CONST: 1.0}, index=data.index))
        parts.extend(blocks[name] for name in self._covariates)
        for a, b in self._interactions:
            cols = {
                f"{ca}{_INTERACTION_SEP}{cb}": blocks[a][ca] * blocks[b][cb]
                for ca, cb in itertools.product(blocks[a].columns, blocks[b].columns)
            }
            parts.append(pd.DataFrame(cols, index=data.index))
        if not parts:
            return pd.DataFrame(index=data.index)
        return pd.concat(parts, axis=1)


def check_rank(design: pd.DataFrame) -> None:
    """
    Raise ``SingularDesignError`` if ``design`` is rank-deficient.

    The error names every column that adds no rank to the columns to its
    left, so the caller can see which term to drop.
    """
    X = design.to_numpy(dtype=float)
    if X.shape[1] == 0 or np.linalg.matrix_rank(X) == X.shape[1]:
        return

    redundant: list[str] = []
    kept: list[int] = []
    for j, name in enumerate(design.columns):
        if np.linalg.matrix_rank(X[:, kept + [j]]) > len(kept):
            kept.append(j)
        else:
            redundant.append(str(name))
    raise SingularDesignError(
        f"Design matrix is rank-deficient ({len(kept)} of {X.shape[1]} columns "
        f"independent). Collinear terms: {redundant}",
        terms=tuple(redundant),
    )


def screen_interactions(
    data: pd.DataFrame,
    treatment: str,
    covariates,
    lower: float = _SCREEN_LOWER,
    upper: float = _SCREEN_UPPER,
) -> pd.DataFrame:
    """
    Flag covariate pairs whose between-group covariance ratio departs from 1.

    For every pair of numeric covariates, computes the covariance among
    treated units and among controls. The ratio treated/control is flagged
    as an interaction candidate when it falls outside ``[lower, upper]``, or
    when it is undefined because the control covariance is zero. This is a
    deterministic comparison, not a statistical test: the flagged pairs are
    meant to be reviewed and passed to ``Roles.interactions`` explicitly.

    Returns a dataframe with columns ``term, cov_treated, cov_control, ratio,
    flagged``, one row per pair, sorted by term.
    """
    if not 0 < lower <= 1 <= upper:
        raise ValueError(f"Screening bounds must satisfy 0 < lower <= 1 <= upper; got [{lower}, {upper}].")

    numeric = [c for c in covariates if not _is_categorical(data[c])]
    skipped = sorted(set(covariates) - set(numeric))
    if skipped:
        logger.info("Interaction screening skips categorical covariates: %s", skipped)

    treated = data.loc[data[treatment] == 1, numeric]
    control = data.loc[data[treatment] == 0, numeric]
    cov_t = treated.cov()
    cov_c = control.cov()

    rows = []
    for a, b in itertools.combinations(numeric, 2):
        ct, cc = float(cov_t.loc[a, b]), float(cov_c.loc[a, b])
        ratio = ct / cc if cc != 0 and np.isfinite(cc) else float("nan")
        flagged = bool(np.isnan(ratio) or ratio < lower or ratio > upper)
        rows.append({
            "term": f"{a}{_INTERACTION_SEP}{b}",
            "cov_treated": ct,
            "cov_control": cc,
            "ratio": ratio,
            "flagged": flagged,
        })

    result = pd.DataFrame(rows, columns=["term", "cov_treated", "cov_control", "ratio", "flagged"])
    return result.sort_values("term", kind="mergesort").reset_index(drop=True)

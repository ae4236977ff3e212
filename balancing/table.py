from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Roles:
    """
    Explicit column roles for a ``CovariateTable``.

    Nothing is inferred from column names: the unit identifier, treatment,
    outcome(s), covariates, interaction pairs and instruments are all
    declared here. ``baseline_outcome`` is the pre-period measurement of the
    outcome, required only for difference-in-differences.

    Example::

        roles = Roles(
            unit_id="id",
            treatment="enrolled",
            outcome="score_post",
            covariates=("age", "income", "region"),
            interactions=(("age", "income"),),
            instruments=("distance",),
            baseline_outcome="score_pre",
        )
    """

    unit_id: str
    treatment: str
    outcome: str
    covariates: tuple[str, ...] = ()
    interactions: tuple[tuple[str, str], ...] = ()
    instruments: tuple[str, ...] = ()
    baseline_outcome: str | None = None

    def __post_init__(self) -> None:
        # Accept lists from callers but store tuples so Roles stays hashable.
        object.__setattr__(self, "covariates", tuple(self.covariates))
        object.__setattr__(self, "instruments", tuple(self.instruments))
        object.__setattr__(
            self, "interactions", tuple(tuple(pair) for pair in self.interactions)
        )

        singles = [self.unit_id, self.treatment, self.outcome]
        if self.baseline_outcome is not None:
            singles.append(self.baseline_outcome)
        if len(set(singles)) < len(singles):
            raise ValueError(
                "Unit id, treatment, outcome and baseline outcome must be different columns."
            )
        for label, names in [("Covariate", self.covariates), ("Instrument", self.instruments)]:
            clash = set(names) & set(singles)
            if clash:
                raise ValueError(
                    f"{label} columns {sorted(clash)} also hold another role."
                )
        overlap = set(self.covariates) & set(self.instruments)
        if overlap:
            raise ValueError(
                f"Columns {sorted(overlap)} are declared as both covariate and instrument."
            )

    @property
    def columns(self) -> list[str]:
        """Every column named by a role, in declaration order."""
        cols = [self.unit_id, self.treatment, self.outcome]
        if self.baseline_outcome is not None:
            cols.append(self.baseline_outcome)
        return cols + list(self.covariates) + list(self.instruments)


class CovariateTable:
    """
    A cleaned, unit-level table with declared column roles.

    The table is validated once on construction and never mutated afterwards:
    it keeps a private copy of the data, ``data`` returns a copy, and every
    derivation returns a new ``CovariateTable``.

    Treatment must be binary (0/1) with both classes present; treatment and
    the primary outcome must be non-missing. Covariates may contain missing
    values; use ``complete_cases()`` to drop them with a reported count.

    Parameters
    ----------
    data : pd.DataFrame
        Must contain every column named in ``roles``.
    roles : Roles
        Column roles.

    Raises
    ------
    ``ValueError``
        If a declared column is missing, unit ids are not unique, treatment
        is not binary with both classes, or treatment/outcome has missing
        values.
    """

    def __init__(self, data: pd.DataFrame, roles: Roles) -> None:
        self._roles = roles
        self._validate(data, roles)
        self._data = data[roles.columns].reset_index(drop=True).copy()
        self._data[roles.treatment] = self._data[roles.treatment].astype(int)

    @staticmethod
    def _validate(data: pd.DataFrame, roles: Roles) -> None:
        data_columns = set(data.columns)
        for label, var in [
            ("Unit id", roles.unit_id),
            ("Treatment", roles.treatment),
            ("Outcome", roles.outcome),
            ("Baseline outcome", roles.baseline_outcome),
        ]:
            if var is not None and var not in data_columns:
                raise ValueError(f"{label} column '{var}' not found in dataframe.")
        for label, names in [("Covariate", roles.covariates), ("Instrument", roles.instruments)]:
            missing = [c for c in names if c not in data_columns]
            if missing:
                raise ValueError(f"{label} columns not found in dataframe: {missing}")

        if data[roles.unit_id].duplicated().any():
            dupes = data.loc[data[roles.unit_id].duplicated(), roles.unit_id].unique()
            raise ValueError(
                f"Unit id '{roles.unit_id}' must be unique. "
                f"Duplicated ids: {sorted(dupes.tolist())[:10]}"
            )

        for label, var in [("Treatment", roles.treatment), ("Outcome", roles.outcome)]:
            n_missing = int(data[var].isna().sum())
            if n_missing:
                raise ValueError(
                    f"{label} '{var}' has {n_missing} missing values. Units without "
                    f"treatment or outcome must be excluded before analysis."
                )

        t_vals = set(data[roles.treatment].unique())
        if not t_vals <= {0, 1, 0.0, 1.0}:
            raise ValueError(
                f"Treatment '{roles.treatment}' must be binary (0/1). "
                f"Found values: {sorted(t_vals)}"
            )
        if not ({0, 1} <= {int(v) for v in t_vals}):
            raise ValueError(
                f"Treatment '{roles.treatment}' must contain both 0 and 1. "
                f"Found only: {t_vals}"
            )

    # ── Accessors ─────────────────────────────────────────────────────────────

    @property
    def roles(self) -> Roles:
        return self._roles

    @property
    def data(self) -> pd.DataFrame:
        """A copy of the underlying dataframe."""
        return self._data.copy()

    @property
    def ids(self) -> pd.Series:
        return self._data[self._roles.unit_id].copy()

    @property
    def treatment(self) -> pd.Series:
        return self._data[self._roles.treatment].copy()

    @property
    def outcome(self) -> pd.Series:
        return self._data[self._roles.outcome].copy()

    @property
    def n_treated(self) -> int:
        return int((self._data[self._roles.treatment] == 1).sum())

    @property
    def n_control(self) -> int:
        return int((self._data[self._roles.treatment] == 0).sum())

    def __len__(self) -> int:
        return len(self._data)

    # ── Derivations ───────────────────────────────────────────────────────────

    def subset(self, mask) -> CovariateTable:
        """
        Return a new table restricted to the rows where ``mask`` is true.

        ``mask`` is a boolean array or Series aligned with the table rows.
        The subset is re-validated, so it must still hold both treatment
        groups.
        """
        mask = np.asarray(mask, dtype=bool)
        if mask.shape != (len(self._data),):
            raise ValueError(
                f"Mask has shape {mask.shape}; expected ({len(self._data)},)."
            )
        return CovariateTable(self._data.loc[mask], self._roles)

    def select_ids(self, ids) -> CovariateTable:
        """Return a new table holding only the given unit ids."""
        return self.subset(self._data[self._roles.unit_id].isin(list(ids)).to_numpy())

    def complete_cases(self, columns=None) -> tuple[CovariateTable, int]:
        """
        Drop units with missing values in ``columns``.

        Defaults to every covariate and instrument. Returns the new table
        and the number of dropped units.
        """
        if columns is None:
            columns = list(self._roles.covariates) + list(self._roles.instruments)
        columns = list(columns)
        unknown = [c for c in columns if c not in self._data.columns]
        if unknown:
            raise ValueError(f"Columns not in table: {unknown}")

        keep = self._data[columns].notna().all(axis=1).to_numpy()
        n_dropped = int((~keep).sum())
        if n_dropped:
            logger.warning(
                "Dropped %d of %d units with missing values in %s",
                n_dropped, len(self._data), columns,
            )
            return self.subset(keep), n_dropped
        return self, 0

    def __repr__(self) -> str:
        return (
            f"CovariateTable(n={len(self)}, treated={self.n_treated}, "
            f"control={self.n_control}, covariates={list(self._roles.covariates)})"
        )

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
import pandas as pd

from .table import CovariateTable

logger = logging.getLogger(__name__)

_MATCH_ON = ("logit", "probability")


def _scalar(value):
    """Unwrap numpy scalars so pair ids compare equal to the table's ids."""
    return value.item() if isinstance(value, np.generic) else value


@dataclass(frozen=True)
class MatchedPair:
    """One treated unit bound to one control unit."""

    treated_id: object
    control_id: object
    distance: float


class MatchResult:
    """
    Output of 1:1 nearest-neighbour matching without replacement.

    Estimates computed on the matched sample are ATTs: every treated unit
    that found a partner is kept, controls are chosen to resemble them.
    """

    estimand = "ATT"

    def __init__(self, pairs: list[MatchedPair], n_unmatched: int, on: str) -> None:
        self._pairs = pairs
        self._n_unmatched = n_unmatched
        self._on = on

    @property
    def pairs(self) -> list[MatchedPair]:
        return list(self._pairs)

    @property
    def n_pairs(self) -> int:
        return len(self._pairs)

    @property
    def n_unmatched(self) -> int:
        """Treated units dropped because the control pool ran out."""
        return self._n_unmatched

    @property
    def on(self) -> str:
        return self._on

    @property
    def matched_ids(self) -> list:
        """Treated ids followed by their matched control ids, in pair order."""
        return [p.treated_id for p in self._pairs] + [p.control_id for p in self._pairs]

    def subset(self, table: CovariateTable) -> CovariateTable:
        """The matched subsample of ``table``: matched treated units and their controls."""
        return table.select_ids(self.matched_ids)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            [(p.treated_id, p.control_id, p.distance) for p in self._pairs],
            columns=["treated_id", "control_id", "distance"],
        )

    def summary(self) -> str:
        dist = np.array([p.distance for p in self._pairs])
        lines = [
            "",
            f"Nearest-neighbour matching on {self._on} score",
            "  1-to-1, greedy, without replacement",
            "─" * 50,
            f"  Matched pairs        : {self.n_pairs:>10d}",
            f"  Unmatched treated    : {self._n_unmatched:>10d}",
        ]
        if len(dist):
            lines.append(f"  Mean pair distance   : {dist.mean():>10.4f}")
            lines.append(f"  Max pair distance    : {dist.max():>10.4f}")
        lines.append("")
        return "\n".join(lines)

    def __repr__(self) -> str:
        return self.summary()


class Matcher:
    """
    Greedy 1:1 nearest-neighbour matching without replacement.

    Treated units are processed in ascending id order. Each is bound to the
    closest control not yet used, by absolute score distance; ties go to the
    lowest control id. No caliper is applied beyond common support, which
    should already have been enforced on the inputs. When the control pool
    runs out the remaining treated units are left unmatched and counted.

    Parameters
    ----------
    on : {"logit", "probability"}
        Which score to match on. Default ``"logit"``.
    """

    def __init__(self, on: str = "logit") -> None:
        if on not in _MATCH_ON:
            raise ValueError(f"Matcher 'on' must be one of {_MATCH_ON}; got '{on}'.")
        self._on = on

    @property
    def on(self) -> str:
        return self._on

    def match(self, ids, scores, treatment) -> MatchResult:
        """
        Match treated units to controls.

        Parameters
        ----------
        ids : array-like
            Unit identifiers (unique, sortable).
        scores : array-like
            The score named by ``on``, aligned with ``ids``.
        treatment : array-like
            Binary treatment indicator aligned with ``ids``.
        """
        ids = np.asarray(ids)
        scores = np.asarray(scores, dtype=float)
        treated = np.asarray(treatment) == 1
        if not (len(ids) == len(scores) == len(treated)):
            raise ValueError("ids, scores and treatment must have the same length.")
        if len(np.unique(ids)) != len(ids):
            raise ValueError("Unit ids must be unique for matching.")

        t_order = np.argsort(ids[treated], kind="mergesort")
        t_ids = ids[treated][t_order]
        t_scores = scores[treated][t_order]

        c_order = np.argsort(ids[~treated], kind="mergesort")
        c_ids = ids[~treated][c_order]
        c_scores = scores[~treated][c_order]

        available = np.ones(len(c_ids), dtype=bool)
        pairs: list[MatchedPair] = []
        for tid, ts in zip(t_ids, t_scores):
            if not available.any():
                break
            dists = np.where(available, np.abs(c_scores - ts), np.inf)
            # argmin returns the first minimum, i.e. the lowest control id.
            j = int(np.argmin(dists))
            available[j] = False
            pairs.append(MatchedPair(_scalar(tid), _scalar(c_ids[j]), float(dists[j])))

        n_unmatched = len(t_ids) - len(pairs)
        if n_unmatched:
            logger.warning(
                "Control pool exhausted: %d of %d treated units left unmatched",
                n_unmatched, len(t_ids),
            )
        logger.info("Matched %d pairs on %s score", len(pairs), self._on)
        return MatchResult(pairs, n_unmatched, self._on)

import numpy as np
import pandas as pd
import pytest

from balancing import CovariateTable, MatchedPair, Matcher, MatchResult, Roles


def make_scores(n_treated=40, n_control=60, seed=42):
    rng = np.random.default_rng(seed)
    n = n_treated + n_control
    ids = rng.permutation(np.arange(1, n + 1))
    t = np.array([1] * n_treated + [0] * n_control)
    scores = np.where(t == 1, rng.normal(0.5, 1.0, size=n), rng.normal(-0.5, 1.0, size=n))
    return ids, scores, t


class TestMatcherValidation:
    def test_bad_score_name_raises(self):
        with pytest.raises(ValueError, match="one of"):
            Matcher(on="distance")

    def test_length_mismatch_raises(self):
        with pytest.raises(ValueError, match="same length"):
            Matcher().match([1, 2, 3], [0.1, 0.2], [1, 0, 0])

    def test_duplicate_ids_raise(self):
        with pytest.raises(ValueError, match="unique"):
            Matcher().match([1, 1, 2], [0.1, 0.2, 0.3], [1, 0, 0])


class TestMatcher:
    @classmethod
    def setup_class(cls):
        cls.ids, cls.scores, cls.t = make_scores()
        cls.result = Matcher().match(cls.ids, cls.scores, cls.t)

    def test_returns_match_result(self):
        assert isinstance(self.result, MatchResult)
        assert all(isinstance(p, MatchedPair) for p in self.result.pairs)

    def test_estimand_is_att(self):
        assert self.result.estimand == "ATT"

    def test_every_treated_matched_when_controls_suffice(self):
        assert self.result.n_pairs == 40
        assert self.result.n_unmatched == 0

    def test_controls_never_reused(self):
        controls = [p.control_id for p in self.result.pairs]
        assert len(controls) == len(set(controls))

    def test_treated_processed_in_id_order(self):
        treated = [p.treated_id for p in self.result.pairs]
        assert treated == sorted(treated)

    def test_pairs_join_treated_to_control(self):
        treated_ids = set(self.ids[self.t == 1].tolist())
        control_ids = set(self.ids[self.t == 0].tolist())
        for p in self.result.pairs:
            assert p.treated_id in treated_ids
            assert p.control_id in control_ids

    def test_distance_is_absolute_score_gap(self):
        score = dict(zip(self.ids.tolist(), self.scores.tolist()))
        for p in self.result.pairs:
            assert p.distance == pytest.approx(abs(score[p.treated_id] - score[p.control_id]))

    def test_deterministic(self):
        again = Matcher().match(self.ids, self.scores, self.t)
        assert again.pairs == self.result.pairs

    def test_to_frame(self):
        frame = self.result.to_frame()
        assert list(frame.columns) == ["treated_id", "control_id", "distance"]
        assert len(frame) == self.result.n_pairs


class TestMatcherEdgeCases:
    def test_pairs_capped_by_smaller_group(self):
        ids, scores, t = make_scores(n_treated=30, n_control=12)
        result = Matcher().match(ids, scores, t)
        assert result.n_pairs == 12
        assert result.n_unmatched == 18

    def test_tie_goes_to_lowest_control_id(self):
        # Controls 3 and 5 are both 1.0 away from the treated unit.
        result = Matcher().match([1, 5, 3], [0.0, -1.0, 1.0], [1, 0, 0])
        assert result.pairs[0].control_id == 3

    def test_greedy_order(self):
        # Treated 1 takes control 10 first, so treated 2 gets control 11.
        result = Matcher().match([2, 1, 10, 11], [0.0, 0.1, 0.05, 3.0], [1, 1, 0, 0])
        assert [(p.treated_id, p.control_id) for p in result.pairs] == [(1, 10), (2, 11)]

    def test_match_on_probability(self):
        result = Matcher(on="probability").match([1, 2, 3], [0.4, 0.5, 0.1], [1, 0, 0])
        assert result.on == "probability"
        assert result.pairs[0].control_id == 2


class TestMatchResultSubset:
    def test_subset_holds_matched_units(self):
        ids, scores, t = make_scores(n_treated=10, n_control=25)
        rng = np.random.default_rng(0)
        df = pd.DataFrame({"id": ids, "t": t, "y": rng.normal(size=len(ids))})
        table = CovariateTable(df, Roles(unit_id="id", treatment="t", outcome="y"))
        result = Matcher().match(table.ids, scores, table.treatment)
        matched = result.subset(table)
        assert len(matched) == 2 * result.n_pairs
        assert matched.n_treated == matched.n_control == 10
        assert set(matched.ids.tolist()) == set(result.matched_ids)

    def test_summary_lists_unmatched(self):
        ids, scores, t = make_scores(n_treated=5, n_control=3)
        summary = Matcher().match(ids, scores, t).summary()
        assert "Unmatched treated" in summary

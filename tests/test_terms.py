import numpy as np
import pandas as pd
import pytest

from balancing import SingularDesignError, TermSet, check_rank, screen_interactions


N = 1_000


def make_data():
    rng = np.random.default_rng(42)
    t = rng.integers(0, 2, size=N)
    x1 = rng.normal(size=N)
    # x2 co-moves with x1 among treated units only.
    x2 = np.where(t == 1, x1 + rng.normal(scale=0.5, size=N), rng.normal(size=N))
    # x3 co-moves with x1 in both groups.
    x3 = x1 + rng.normal(scale=0.5, size=N)
    region = rng.choice(["north", "south", "west"], size=N)
    return pd.DataFrame({"t": t, "x1": x1, "x2": x2, "x3": x3, "region": region})


class TestTermSetValidation:
    def test_duplicate_covariate_raises(self):
        with pytest.raises(ValueError, match="Duplicate"):
            TermSet(["x1", "x1"])

    def test_self_interaction_raises(self):
        with pytest.raises(ValueError, match="Self-interaction"):
            TermSet(["x1"], interactions=[("x1", "x1")])

    def test_undeclared_interaction_raises(self):
        with pytest.raises(ValueError, match="not a declared covariate"):
            TermSet(["x1"], interactions=[("x1", "x2")])

    def test_repeated_interaction_raises(self):
        with pytest.raises(ValueError, match="declared twice"):
            TermSet(["x1", "x2"], interactions=[("x1", "x2"), ("x2", "x1")])


class TestDesign:
    def test_names(self):
        terms = TermSet(["x1", "x2"], interactions=[("x1", "x2")])
        assert terms.names == ["x1", "x2", "x1:x2"]
        assert len(terms) == 3

    def test_numeric_design(self):
        df = make_data()
        X = TermSet(["x1", "x2"], interactions=[("x1", "x2")]).design(df)
        assert list(X.columns) == ["const", "x1", "x2", "x1:x2"]
        np.testing.assert_allclose(X["x1:x2"], df["x1"] * df["x2"])

    def test_without_constant(self):
        X = TermSet(["x1"]).design(make_data(), constant=False)
        assert list(X.columns) == ["x1"]

    def test_categorical_expands_to_dummies(self):
        X = TermSet(["region"]).design(make_data(), constant=False)
        assert list(X.columns) == ["region[south]", "region[west]"]
        assert set(np.unique(X.to_numpy())) <= {0.0, 1.0}

    def test_levels_cover_categoricals_only(self):
        levels = TermSet(["x1", "region"]).levels(make_data())
        assert levels == {"region": ("north", "south", "west")}

    def test_fixed_levels_keep_reference_on_subset(self):
        df = make_data()
        terms = TermSet(["x1", "region"], interactions=[("x1", "region")])
        levels = terms.levels(df)
        sub = df[df["region"] != "north"]
        X = terms.design(sub, levels=levels)
        full = terms.design(df)
        assert list(X.columns) == list(full.columns)
        pd.testing.assert_frame_equal(X, full.loc[sub.index])

    def test_subset_without_levels_recodes_reference(self):
        df = make_data()
        sub = df[df["region"] != "north"]
        X = TermSet(["region"]).design(sub, constant=False)
        assert list(X.columns) == ["region[west]"]

    def test_unseen_level_raises(self):
        df = make_data()
        levels = TermSet(["region"]).levels(df)
        df.loc[0, "region"] = "east"
        with pytest.raises(ValueError, match="not present"):
            TermSet(["region"]).design(df, levels=levels)

    def test_missing_covariate_column_raises(self):
        with pytest.raises(ValueError, match="not found"):
            TermSet(["nope"]).design(make_data())

    def test_empty_termset(self):
        X = TermSet().design(make_data())
        assert list(X.columns) == ["const"]


class TestCheckRank:
    def test_full_rank_passes(self):
        check_rank(TermSet(["x1", "x2"]).design(make_data()))

    def test_collinear_column_named(self):
        df = make_data()
        df["x1_double"] = 2 * df["x1"]
        X = TermSet(["x1", "x2", "x1_double"]).design(df)
        with pytest.raises(SingularDesignError, match="x1_double") as info:
            check_rank(X)
        assert info.value.terms == ("x1_double",)

    def test_singular_design_is_value_error(self):
        df = make_data()
        df["c"] = 1.0
        with pytest.raises(ValueError):
            check_rank(TermSet(["c"]).design(df))


class TestScreenInteractions:
    @classmethod
    def setup_class(cls):
        cls.screen = screen_interactions(make_data(), "t", ["x1", "x2", "x3", "region"])

    def test_one_row_per_numeric_pair(self):
        assert self.screen["term"].tolist() == ["x1:x2", "x1:x3", "x2:x3"]

    def test_differing_covariance_flagged(self):
        row = self.screen.set_index("term").loc["x1:x2"]
        assert row["flagged"]

    def test_shared_covariance_not_flagged(self):
        row = self.screen.set_index("term").loc["x1:x3"]
        assert not row["flagged"]
        assert 0.5 < row["ratio"] < 2.0

    def test_deterministic(self):
        again = screen_interactions(make_data(), "t", ["x1", "x2", "x3", "region"])
        pd.testing.assert_frame_equal(self.screen, again)

    def test_bad_bounds_raise(self):
        with pytest.raises(ValueError, match="bounds"):
            screen_interactions(make_data(), "t", ["x1", "x2"], lower=2.0, upper=3.0)

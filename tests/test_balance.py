import numpy as np
import pandas as pd
import pytest

from balancing import (
    BalanceDiagnostics,
    BalanceTable,
    CovariateTable,
    Matcher,
    PropensityModel,
    Roles,
    Stratifier,
    TermSet,
    iptw_weights,
    logit_to_probability,
)


N = 4_000
TERMS = TermSet(["x1", "x2"])


def make_data():
    """
    Confounded assignment: treated units have higher x1 and lower x2.
      t ~ Bernoulli(logistic(-0.3 + 0.8*x1 - 0.5*x2))
    """
    rng = np.random.default_rng(42)
    x1 = rng.normal(size=N)
    x2 = rng.normal(size=N)
    t = rng.binomial(1, logit_to_probability(-0.3 + 0.8 * x1 - 0.5 * x2))
    y = 1.0 + 2.0 * t + x1 + x2 + rng.normal(size=N)
    return pd.DataFrame({"id": np.arange(N), "t": t, "y": y, "x1": x1, "x2": x2})


def smd(df, col):
    xt = df.loc[df["t"] == 1, col]
    xc = df.loc[df["t"] == 0, col]
    return abs(xt.mean() - xc.mean()) / np.sqrt((xt.var(ddof=1) + xc.var(ddof=1)) / 2)


class TestUnadjusted:
    @classmethod
    def setup_class(cls):
        cls.df = make_data()
        cls.table = BalanceDiagnostics(TERMS, "t").unadjusted(cls.df)

    def test_returns_balance_table(self):
        assert isinstance(self.table, BalanceTable)
        assert self.table.kind == "unadjusted"

    def test_one_row_per_term(self):
        assert self.table.terms == ["x1", "x2"]
        assert list(self.table.frame.columns) == [
            "term", "diff_before", "variance_ratio_before", "diff_after", "variance_ratio_after"
        ]

    def test_smd_matches_formula(self):
        for term in ("x1", "x2"):
            assert self.table.row(term)["diff_before"] == pytest.approx(smd(self.df, term))

    def test_variance_ratio_matches_formula(self):
        xt = self.df.loc[self.df["t"] == 1, "x1"]
        xc = self.df.loc[self.df["t"] == 0, "x1"]
        expected = xt.var(ddof=1) / xc.var(ddof=1)
        assert self.table.row("x1")["variance_ratio_before"] == pytest.approx(expected)

    def test_after_repeats_before(self):
        f = self.table.frame
        np.testing.assert_allclose(f["diff_after"], f["diff_before"])
        np.testing.assert_allclose(f["variance_ratio_after"], f["variance_ratio_before"])

    def test_confounders_imbalanced(self):
        assert self.table.row("x1")["diff_before"] > 0.2
        assert self.table.row("x2")["diff_before"] > 0.1

    def test_idempotent(self):
        again = BalanceDiagnostics(TERMS, "t").unadjusted(self.df)
        pd.testing.assert_frame_equal(self.table.frame, again.frame)

    def test_does_not_mutate_input(self):
        assert list(self.df.columns) == ["id", "t", "y", "x1", "x2"]

    def test_unknown_term_raises(self):
        with pytest.raises(KeyError, match="x9"):
            self.table.row("x9")

    def test_summary(self):
        assert "Covariate balance (unadjusted)" in self.table.summary()


class TestAdjustedBalance:
    """Fit the propensity model once, then check every adjustment reduces imbalance."""

    @classmethod
    def setup_class(cls):
        cls.df = make_data()
        table = CovariateTable(cls.df, Roles(unit_id="id", treatment="t", outcome="y", covariates=("x1", "x2")))
        scores = PropensityModel(TERMS).fit(table).score(table.data)
        diag = BalanceDiagnostics(TERMS, "t")

        weights = iptw_weights(scores["probability"], table.treatment)
        cls.weighted = diag.weighted(cls.df, table.data, weights, kind="IPTW")

        match = Matcher().match(table.ids, scores["logit"], table.treatment)
        cls.matched = diag.matched(cls.df, match.subset(table).data)

        strata = Stratifier(n_strata=5).fit(scores["logit"])
        cls.stratified = diag.stratified(cls.df, table.data, strata.labels)

    def test_weighting_reduces_smd(self):
        for term in ("x1", "x2"):
            row = self.weighted.row(term)
            assert row["diff_after"] < row["diff_before"]
            assert row["diff_after"] < 0.1

    def test_matching_reduces_smd(self):
        row = self.matched.row("x1")
        assert row["diff_after"] < row["diff_before"]

    def test_stratification_reduces_smd(self):
        for term in ("x1", "x2"):
            row = self.stratified.row(term)
            assert row["diff_after"] < row["diff_before"]

    def test_before_columns_shared_across_adjustments(self):
        for table in (self.weighted, self.matched, self.stratified):
            np.testing.assert_allclose(
                table.frame["diff_before"], [smd(self.df, "x1"), smd(self.df, "x2")]
            )

    def test_kinds(self):
        assert self.weighted.kind == "IPTW"
        assert self.matched.kind == "matched"
        assert self.stratified.kind == "stratified"


class TestBalanceEdgeCases:
    def test_zero_variance_gives_nan_ratio(self):
        rng = np.random.default_rng(0)
        t = np.array([1] * 50 + [0] * 50)
        x = np.where(t == 1, 1.0, rng.normal(size=100))
        df = pd.DataFrame({"t": t, "x": x})
        table = BalanceDiagnostics(TermSet(["x"]), "t").unadjusted(df)
        row = table.row("x")
        assert np.isnan(row["variance_ratio_before"])
        assert np.isfinite(row["diff_before"])
        assert table.undefined_variance_ratios() == ["x"]
        assert "Variance ratio undefined" in table.summary()

    def test_nan_weights_ignored(self):
        df = make_data().iloc[:200]
        w = np.ones(200)
        w[:10] = np.nan
        table = BalanceDiagnostics(TERMS, "t").weighted(df, df, w)
        assert np.isfinite(table.frame["diff_after"]).all()

    def test_negative_weights_raise(self):
        df = make_data().iloc[:50]
        w = np.ones(50)
        w[0] = -1.0
        with pytest.raises(ValueError, match="non-negative"):
            BalanceDiagnostics(TERMS, "t").weighted(df, df, w)

    def test_misaligned_weights_raise(self):
        df = make_data().iloc[:50]
        with pytest.raises(ValueError, match="aligned"):
            BalanceDiagnostics(TERMS, "t").weighted(df, df, np.ones(10))

    def test_strata_without_both_groups_raise(self):
        df = pd.DataFrame({"t": [1, 1, 0, 0], "x1": [0.1, 0.2, 0.3, 0.4], "x2": [1.0, 2.0, 3.0, 4.0]})
        with pytest.raises(ValueError, match="both treated and control"):
            BalanceDiagnostics(TERMS, "t").stratified(df, df, [1, 1, 2, 2])

    def test_categorical_terms_expanded(self):
        df = pd.DataFrame({
            "t": [1, 1, 1, 0, 0, 0],
            "region": ["a", "b", "c", "a", "a", "c"],
        })
        table = BalanceDiagnostics(TermSet(["region"]), "t").unadjusted(df)
        assert table.terms == ["region[b]", "region[c]"]


def make_regional_data():
    rng = np.random.default_rng(11)
    n = 3_000
    x = rng.normal(size=n)
    region = rng.choice(["east", "north", "south"], size=n)
    t = rng.binomial(1, logit_to_probability(0.4 * x + np.where(region == "north", 0.6, 0.0)))
    return pd.DataFrame({"t": t, "x": x, "region": region})


class TestCategoricalLevelsAfterAdjustment:
    """The adjusted sample lacks the reference level of ``region``."""

    @classmethod
    def setup_class(cls):
        cls.before = make_regional_data()
        cls.after = cls.before[cls.before["region"] != "east"].reset_index(drop=True)
        cls.diagnostics = BalanceDiagnostics(TermSet(["x", "region"]), "t")

    def assert_populated(self, table):
        assert table.terms == ["region[north]", "region[south]", "x"]
        assert table.frame["diff_after"].notna().all()

    def test_matched(self):
        table = self.diagnostics.matched(self.before, self.after)
        self.assert_populated(table)

    def test_matched_north_diff_uses_before_scale(self):
        table = self.diagnostics.matched(self.before, self.after)
        north = (self.after["region"] == "north").astype(float)
        diff = north[self.after["t"] == 1].mean() - north[self.after["t"] == 0].mean()
        indicator = (self.before["region"] == "north").astype(float)
        scale = np.sqrt(
            (indicator[self.before["t"] == 1].var(ddof=1) + indicator[self.before["t"] == 0].var(ddof=1)) / 2
        )
        assert table.row("region[north]")["diff_after"] == pytest.approx(abs(diff) / scale)

    def test_weighted(self):
        self.assert_populated(self.diagnostics.weighted(self.before, self.after, np.ones(len(self.after))))

    def test_stratified(self):
        strata = np.where(self.after["x"] > 0, 2, 1)
        self.assert_populated(self.diagnostics.stratified(self.before, self.after, strata))

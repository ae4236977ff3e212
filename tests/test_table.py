import numpy as np
import pandas as pd
import pytest

from balancing import CovariateTable, Roles


def make_data(n=200):
    """Fixed seed so every call returns the same dataframe."""
    rng = np.random.default_rng(42)
    return pd.DataFrame({
        "id": np.arange(n),
        "t": rng.integers(0, 2, size=n),
        "y": rng.normal(size=n),
        "x1": rng.normal(size=n),
        "x2": rng.normal(size=n),
        "z": rng.normal(size=n),
    })


def make_roles(**kwargs):
    base = dict(unit_id="id", treatment="t", outcome="y", covariates=("x1", "x2"))
    base.update(kwargs)
    return Roles(**base)


class TestRoles:
    def test_lists_become_tuples(self):
        roles = Roles(unit_id="id", treatment="t", outcome="y",
                      covariates=["x1", "x2"], interactions=[["x1", "x2"]])
        assert roles.covariates == ("x1", "x2")
        assert roles.interactions == (("x1", "x2"),)
        hash(roles)

    def test_treatment_equals_outcome_raises(self):
        with pytest.raises(ValueError, match="different"):
            Roles(unit_id="id", treatment="y", outcome="y")

    def test_covariate_holding_another_role_raises(self):
        with pytest.raises(ValueError, match="another role"):
            make_roles(covariates=("x1", "t"))

    def test_covariate_and_instrument_raises(self):
        with pytest.raises(ValueError, match="both covariate and instrument"):
            make_roles(instruments=("x1",))

    def test_columns_in_declaration_order(self):
        roles = make_roles(instruments=("z",), baseline_outcome="x0")
        assert roles.columns == ["id", "t", "y", "x0", "x1", "x2", "z"]


class TestCovariateTableValidation:
    def test_missing_treatment_column_raises(self):
        df = make_data().drop(columns=["t"])
        with pytest.raises(ValueError, match="Treatment"):
            CovariateTable(df, make_roles())

    def test_missing_covariate_column_raises(self):
        df = make_data().drop(columns=["x2"])
        with pytest.raises(ValueError, match="Covariate"):
            CovariateTable(df, make_roles())

    def test_duplicate_ids_raise(self):
        df = make_data()
        df.loc[1, "id"] = 0
        with pytest.raises(ValueError, match="unique"):
            CovariateTable(df, make_roles())

    def test_non_binary_treatment_raises(self):
        df = make_data()
        df["t"] = df["t"] * 3 + 1
        with pytest.raises(ValueError, match="binary"):
            CovariateTable(df, make_roles())

    def test_single_treatment_class_raises(self):
        df = make_data()
        df["t"] = 1
        with pytest.raises(ValueError, match="both 0 and 1"):
            CovariateTable(df, make_roles())

    def test_missing_outcome_values_raise(self):
        df = make_data()
        df.loc[3, "y"] = np.nan
        with pytest.raises(ValueError, match="missing"):
            CovariateTable(df, make_roles())


class TestCovariateTable:
    def test_counts(self):
        df = make_data()
        table = CovariateTable(df, make_roles())
        assert len(table) == len(df)
        assert table.n_treated == int(df["t"].sum())
        assert table.n_treated + table.n_control == len(df)

    def test_does_not_mutate_input(self):
        df = make_data()
        original = df.copy()
        table = CovariateTable(df, make_roles())
        table.data["x1"] = 0.0
        pd.testing.assert_frame_equal(df, original)
        assert not (table.data["x1"] == 0.0).all()

    def test_keeps_only_declared_columns(self):
        table = CovariateTable(make_data(), make_roles())
        assert list(table.data.columns) == ["id", "t", "y", "x1", "x2"]

    def test_subset_returns_new_table(self):
        table = CovariateTable(make_data(), make_roles())
        mask = np.arange(len(table)) < 100
        sub = table.subset(mask)
        assert len(sub) == 100
        assert len(table) == 200

    def test_subset_wrong_length_raises(self):
        table = CovariateTable(make_data(), make_roles())
        with pytest.raises(ValueError, match="shape"):
            table.subset(np.ones(3, dtype=bool))

    def test_select_ids(self):
        table = CovariateTable(make_data(), make_roles())
        ids = table.data.groupby("t")["id"].first().tolist()
        sub = table.select_ids(ids)
        assert sorted(sub.ids.tolist()) == sorted(ids)

    def test_complete_cases_reports_dropped(self):
        df = make_data()
        df.loc[[2, 5, 9], "x1"] = np.nan
        table, n_dropped = CovariateTable(df, make_roles()).complete_cases()
        assert n_dropped == 3
        assert len(table) == len(df) - 3
        assert table.data["x1"].notna().all()

    def test_complete_cases_nothing_missing(self):
        table = CovariateTable(make_data(), make_roles())
        same, n_dropped = table.complete_cases()
        assert n_dropped == 0
        assert same is table

    def test_complete_cases_unknown_column_raises(self):
        table = CovariateTable(make_data(), make_roles())
        with pytest.raises(ValueError, match="not in table"):
            table.complete_cases(["nope"])

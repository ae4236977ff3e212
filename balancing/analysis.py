from __future__ import annotations

import logging

import pandas as pd

from ._assumptions import PROPENSITY_ASSUMPTIONS
from .balance import BalanceDiagnostics, BalanceTable
from .config import AnalysisConfig
from .estimators.did import DIDEstimator
from .estimators.effect import EffectEstimator, EffectResult, stratum_effects, summarize
from .estimators.iv import InstrumentalVariableEstimator, IVResult
from .matching import Matcher, MatchResult
from .propensity import PropensityFit, PropensityModel
from .strata import Stratification, Stratifier, stratum_diagnostics
from .support import CommonSupport, common_support
from .table import CovariateTable, Roles
from .terms import TermSet
from .weighting import MMWSWeights, iptw_weights, mmws_weights

logger = logging.getLogger(__name__)

METHODS = ("PSM", "IPTW", "MMWS", "IV", "DID")


class AnalysisReport:
    """
    Everything one ``CausalAnalysis.run()`` produced.

    ``effects`` maps method name to ``EffectResult``; ``balance`` maps
    ``"unadjusted"``, ``"PSM"``, ``"IPTW"``, ``"MMWS"`` and ``"stratified"``
    to ``BalanceTable``; ``exclusions`` counts every unit left out at each
    stage; ``skipped`` lists methods that did not run and why.
    """

    def __init__(
        self,
        table: CovariateTable,
        propensity: PropensityFit,
        scores: pd.DataFrame,
        support: CommonSupport,
        match: MatchResult,
        iptw: pd.Series,
        stratification: Stratification,
        mmws: MMWSWeights,
        stratum_table: pd.DataFrame,
        stratum_effects: pd.DataFrame,
        balance: dict[str, BalanceTable],
        effects: dict[str, EffectResult],
        iv: IVResult | None,
        exclusions: dict[str, int],
        skipped: list[tuple[str, str]],
    ) -> None:
        self.table = table
        self.propensity = propensity
        self.scores = scores
        self.support = support
        self.match = match
        self.iptw = iptw
        self.stratification = stratification
        self.mmws = mmws
        self.stratum_table = stratum_table
        self.stratum_effects = stratum_effects
        self.balance = balance
        self.effects = effects
        self.iv = iv
        self.exclusions = exclusions
        self.skipped = skipped

    def summary(self) -> pd.DataFrame:
        """One row per method that ran, in ``METHODS`` order."""
        return summarize([self.effects[m] for m in METHODS if m in self.effects])

    def __repr__(self) -> str:
        ran = [m for m in METHODS if m in self.effects]
        return f"AnalysisReport(methods={ran}, exclusions={self.exclusions})"


class CausalAnalysis:
    """
    Run all five identification strategies on one unit table.

    The propensity pipeline (PSM, IPTW, MMWS) fits one propensity model,
    applies common support once, and adjusts the retained units three ways.
    IV runs when ``roles.instruments`` is non-empty and DID when
    ``roles.baseline_outcome`` is set; both use the full table and bypass the
    propensity pipeline. No stage mutates its input.

    Example::

        roles = Roles(unit_id="id", treatment="enrolled", outcome="score",
                      covariates=("age", "income"), instruments=("distance",),
                      baseline_outcome="score_pre")
        report = CausalAnalysis(roles).run(df)
        print(report.summary())
    """

    def __init__(self, roles: Roles, config: AnalysisConfig | None = None) -> None:
        self._roles = roles
        self._config = config or AnalysisConfig()
        self._terms = TermSet.from_roles(roles)

    @property
    def terms(self) -> TermSet:
        return self._terms

    def run(self, data: pd.DataFrame) -> AnalysisReport:
        roles, cfg, terms = self._roles, self._config, self._terms
        T, Y = roles.treatment, roles.outcome

        table, n_incomplete = CovariateTable(data, roles).complete_cases()
        exclusions = {"incomplete_covariates": n_incomplete}

        # ── Propensity pipeline ───────────────────────────────────────────────
        propensity = PropensityModel(terms).fit(table)
        scores = propensity.score(table.data)
        support = common_support(scores["logit"], table.treatment, caliper=cfg.caliper)
        exclusions["outside_support"] = support.n_excluded

        retained = table.subset(support.in_support.to_numpy())
        kept = scores.loc[support.in_support.to_numpy()].reset_index(drop=True)
        rdata = retained.data

        match = Matcher(on=cfg.match_on).match(retained.ids, kept[cfg.match_on], retained.treatment)
        exclusions["unmatched_treated"] = match.n_unmatched
        matched = match.subset(retained)

        iptw = iptw_weights(kept["probability"], retained.treatment, ids=retained.ids)

        stratification = Stratifier(cfg.n_strata, cfg.strata_mode).fit(kept["logit"])
        mmws = mmws_weights(
            stratification.labels, retained.treatment, ids=retained.ids, strict=cfg.strict_weights,
        )
        exclusions["mmws_degenerate"] = mmws.n_excluded

        stratum_table = stratum_diagnostics(stratification, kept["logit"], retained.treatment, retained.outcome)
        per_stratum = stratum_effects(
            rdata, Y, T, stratification.labels,
            reference_sd=cfg.reference_sd, n_strata=stratification.n_strata,
        )

        # ── Balance ───────────────────────────────────────────────────────────
        before = table.data
        diagnostics = BalanceDiagnostics(terms, T)
        balance = {
            "unadjusted": diagnostics.unadjusted(before),
            "PSM": diagnostics.matched(before, matched.data),
            "IPTW": diagnostics.weighted(before, rdata, iptw, kind="IPTW"),
            "MMWS": diagnostics.weighted(before, rdata, mmws.weights, kind="MMWS"),
            "stratified": diagnostics.stratified(before, rdata, stratification.labels),
        }

        # ── Effects ───────────────────────────────────────────────────────────
        estimator = EffectEstimator(terms, Y, T, reference_sd=cfg.reference_sd)
        support_note = f"{support.n_excluded} units outside common support excluded."
        effects = {
            "PSM": estimator.fit(
                matched.data, method="PSM", estimand=MatchResult.estimand,
                assumptions=PROPENSITY_ASSUMPTIONS,
                notes=(support_note, f"{match.n_unmatched} treated units unmatched."),
            ),
            "IPTW": estimator.fit(
                rdata, weights=iptw.to_numpy(), method="IPTW", estimand="ATE",
                assumptions=PROPENSITY_ASSUMPTIONS, notes=(support_note,),
            ),
        }
        valid = mmws.valid.to_numpy()
        effects["MMWS"] = estimator.fit(
            rdata.loc[valid],
            weights=mmws.weights.to_numpy()[valid],
            strata=stratification.labels.to_numpy()[valid],
            method="MMWS", estimand="ATE",
            assumptions=PROPENSITY_ASSUMPTIONS,
            notes=(support_note, f"{mmws.n_excluded} units in degenerate strata excluded."),
        )

        skipped: list[tuple[str, str]] = []
        iv = None
        if roles.instruments:
            iv = InstrumentalVariableEstimator(
                terms, Y, T, roles.instruments,
                weak_threshold=cfg.weak_instrument_threshold,
                reference_sd=cfg.reference_sd,
            ).fit(table.data)
            effects["IV"] = iv.effect
        else:
            skipped.append(("IV", "no instrument declared"))

        if roles.baseline_outcome is not None:
            panel, n_missing = table.complete_cases([roles.baseline_outcome])
            exclusions["did_missing_baseline"] = n_missing
            effects["DID"] = DIDEstimator(
                roles.unit_id, T, roles.baseline_outcome, Y,
                cov_type=cfg.did_cov_type, reference_sd=cfg.reference_sd,
            ).fit(panel.data)
        else:
            skipped.append(("DID", "no baseline outcome declared"))

        for method, reason in skipped:
            logger.info("Skipped %s: %s", method, reason)

        return AnalysisReport(
            table=table,
            propensity=propensity,
            scores=scores,
            support=support,
            match=match,
            iptw=iptw,
            stratification=stratification,
            mmws=mmws,
            stratum_table=stratum_table,
            stratum_effects=per_stratum,
            balance=balance,
            effects=effects,
            iv=iv,
            exclusions=exclusions,
            skipped=skipped,
        )

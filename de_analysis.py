"""
Differential expression analysis using PyDESeq2.

Implements "fit once, contrast many": a negative-binomial GLM with the
experimental group and the unwanted-variation factors as regressors is fitted
once, then each contrast is extracted and reduced to the significant set by two
independent filters (adjusted p-value and mean abundance).
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple
import logging
import pandas as pd
import numpy as np
from pydeseq2.dds import DeseqDataSet
from pydeseq2.default_inference import DefaultInference
from pydeseq2.ds import DeseqStats

from sample_design import SampleDesign
from table_utils import join_by_key

logger = logging.getLogger(__name__)

STAT_COLUMNS = ["baseMean", "log2FoldChange", "lfcSE", "stat", "pvalue", "padj"]


@dataclass
class DEResult:
    """Result from differential expression analysis of one contrast."""

    results_df: pd.DataFrame  # all tested genes: gene, baseMean, log2FoldChange, lfcSE, stat, pvalue, padj, annotation
    significant_df: pd.DataFrame  # padj filter AND abundance filter, sorted by padj
    expressed_genes: List[str]  # genes passing the abundance filter
    comparison: Tuple[str, str]  # (test_condition, reference_condition)
    formula: str  # model design formula
    n_significant: int  # rows in significant_df
    warnings: List[str] = field(default_factory=list)


class DEAnalysisEngine:
    """Differential expression analysis using PyDESeq2."""

    def __init__(
        self,
        padj_threshold: float = 0.05,
        min_log2_abundance: float = 6.5,
        pseudocount: float = 0.5,
        shrink_lfc: bool = True,
        n_cpus: int = 1,
    ):
        self.padj_threshold = padj_threshold
        self.min_log2_abundance = min_log2_abundance
        self.pseudocount = pseudocount
        self.shrink_lfc = shrink_lfc
        self.inference = DefaultInference(n_cpus=n_cpus)

    @staticmethod
    def design_formula(design: SampleDesign) -> str:
        """Covariates first, the experimental factor last: ~W1 + condition."""
        return "~" + " + ".join(design.covariates + [design.design_factor])

    def fit_model(
        self,
        counts: pd.DataFrame,
        design: SampleDesign,
        reference_level: Optional[str] = None,
    ) -> DeseqDataSet:
        """
        Fit DESeq2 model ONCE.

        Args:
            counts: genes x samples counts (GC-normalized, filtered)
            design: SampleDesign with the group column and W1..Wk
            reference_level: Level used as the model's baseline, so the
                shrinkage coefficient is test vs this level (default: first
                level of the design)

        Returns:
            Fitted DeseqDataSet (reuse for multiple contrasts)
        """
        design = design.align_to(counts.columns)
        factor = design.design_factor
        levels = [str(lvl) for lvl in design.levels]
        if reference_level is not None:
            design.samples_in(reference_level)  # raises on unknown level
            levels.remove(reference_level)
            levels.insert(0, reference_level)

        metadata = design.table.copy()
        metadata[factor] = pd.Categorical(
            metadata[factor].astype(str), categories=levels
        )
        for covariate in design.covariates:
            metadata[covariate] = metadata[covariate].astype(float)

        formula = self.design_formula(design)
        logger.info(
            f"Fitting DESeq2 model {formula} on {counts.shape[0]} genes x {counts.shape[1]} samples"
        )

        dds = DeseqDataSet(
            counts=counts.T.round().astype(int),  # PyDESeq2 expects samples x genes
            metadata=metadata,
            design=formula,
            refit_cooks=True,
            inference=self.inference,
            quiet=True,
        )
        dds.deseq2()
        return dds

    def _shrinkage_coefficient(
        self, dds: DeseqDataSet, factor: str, test: str, reference: str
    ) -> Optional[str]:
        lfc_columns = list(dds.varm["LFC"].columns)
        for name in (f"{factor}[T.{test}]", f"{factor}_{test}_vs_{reference}"):
            if name in lfc_columns:
                return name
        return None

    def get_comparison(
        self,
        dds: DeseqDataSet,
        design: SampleDesign,
        test_condition: str,
        reference_condition: str,
        abundance: pd.DataFrame,
        annotation: Optional[pd.DataFrame] = None,
    ) -> DEResult:
        """
        Compute single contrast from fitted model and apply both filters.

        Args:
            dds: Fitted DeseqDataSet
            design: SampleDesign used for the fit
            test_condition: Test condition name
            reference_condition: Reference condition name
            abundance: genes x samples abundance (TPM) for the abundance filter
            annotation: Optional gene annotation indexed by gene id

        Returns:
            DEResult for this comparison
        """
        for level in (test_condition, reference_condition):
            design.samples_in(level)  # raises on unknown level

        factor = design.design_factor
        warnings_list: List[str] = []

        stat_res = DeseqStats(
            dds,
            contrast=[factor, test_condition, reference_condition],
            alpha=self.padj_threshold,
            inference=self.inference,
            quiet=True,
        )
        stat_res.summary()

        if self.shrink_lfc:
            coeff = self._shrinkage_coefficient(dds, factor, test_condition, reference_condition)
            if coeff is None:
                msg = (
                    f"No model coefficient for {test_condition} vs {reference_condition}; "
                    f"log2 fold changes left unshrunk"
                )
                logger.warning(msg)
                warnings_list.append(msg)
            else:
                stat_res.lfc_shrink(coeff=coeff)

        results_df = stat_res.results_df[STAT_COLUMNS].copy()
        results_df.index = results_df.index.astype(str)
        results_df.index.name = "gene"

        if annotation is not None:
            results_df = join_by_key(
                results_df, annotation.reindex(results_df.index),
                how="left", what="DE results and annotation",
            )

        expressed = self.expressed_genes(
            abundance, design, [test_condition, reference_condition],
            self.min_log2_abundance, self.pseudocount,
        )
        results_df = results_df.reset_index()
        significant_df = self.filter_results(results_df, expressed, self.padj_threshold)

        n_up = int((significant_df["log2FoldChange"] > 0).sum())
        logger.info(
            f"{test_condition} vs {reference_condition}: {len(significant_df)} significant genes "
            f"({n_up} up, {len(significant_df) - n_up} down) of {len(results_df)} tested"
        )

        return DEResult(
            results_df=results_df,
            significant_df=significant_df,
            expressed_genes=list(expressed),
            comparison=(test_condition, reference_condition),
            formula=self.design_formula(design),
            n_significant=len(significant_df),
            warnings=warnings_list,
        )

    def run_all_comparisons(
        self,
        counts: pd.DataFrame,
        design: SampleDesign,
        comparisons: List[Tuple[str, str]],
        abundance: pd.DataFrame,
        annotation: Optional[pd.DataFrame] = None,
    ) -> Dict[Tuple[str, str], DEResult]:
        """
        Main entry point: fit model once, compute all contrasts.

        The model baseline is the reference of the first comparison, so its
        fold changes can always be shrunk. A failed fit or contrast aborts the
        run: the error is logged and raised.

        Returns:
            Dict mapping (test, ref) -> DEResult
        """
        design = design.align_to(counts.columns)
        reference = comparisons[0][1] if comparisons else None
        try:
            dds = self.fit_model(counts, design, reference_level=reference)
        except (ValueError, RuntimeError, TypeError) as e:
            logger.error(f"DE analysis model fit failed: {str(e)}", exc_info=True)
            raise

        results = {}
        for test_cond, ref_cond in comparisons:
            try:
                results[(test_cond, ref_cond)] = self.get_comparison(
                    dds, design, test_cond, ref_cond, abundance.loc[counts.index], annotation
                )
            except (ValueError, RuntimeError, TypeError) as e:
                logger.error(
                    f"DE analysis comparison ({test_cond} vs {ref_cond}) failed: {str(e)}",
                    exc_info=True,
                )
                raise
        return results

    @staticmethod
    def significant_genes(
        results_df: pd.DataFrame, padj_threshold: float = 0.05
    ) -> pd.DataFrame:
        """Rows with padj < threshold and no missing statistic."""
        complete = results_df.dropna(subset=STAT_COLUMNS)
        return complete[complete["padj"] < padj_threshold].copy()

    @staticmethod
    def expressed_genes(
        abundance: pd.DataFrame,
        design: SampleDesign,
        groups: Sequence[str],
        min_log2: float = 6.5,
        pseudocount: float = 0.5,
    ) -> pd.Index:
        """
        Genes whose mean log2(abundance + pseudocount) exceeds `min_log2` in
        at least one of `groups`.
        """
        design = design.align_to(abundance.columns)
        log_abundance = np.log2(abundance + pseudocount)
        means = pd.DataFrame(
            {g: log_abundance[design.samples_in(g)].mean(axis=1) for g in groups}
        )
        return abundance.index[(means > min_log2).any(axis=1)]

    @staticmethod
    def filter_results(
        results_df: pd.DataFrame,
        expressed: Sequence[str],
        padj_threshold: float = 0.05,
    ) -> pd.DataFrame:
        """
        Filter DE results to the reported significant set.

        Args:
            results_df: DE results DataFrame with a "gene" column
            expressed: Genes passing the abundance filter
            padj_threshold: Adjusted p-value threshold (default: 0.05)

        Returns:
            Intersection of the p-value and abundance filters, sorted by padj
        """
        sig = DEAnalysisEngine.significant_genes(results_df, padj_threshold)
        sig = sig[sig["gene"].isin(set(expressed))]
        return sig.sort_values("padj", kind="mergesort").reset_index(drop=True)

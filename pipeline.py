"""
Remyelination RNA-seq analysis pipeline.

Runs the stages in order, each taking the previous stage's output and
returning a new value:

    abundance bundle -> annotation -> expression filter -> GC normalization
    -> unwanted variation -> differential expression -> reports

Usage:
    python pipeline.py --config config/pipeline.yaml
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple
import argparse
import logging
import sys
import pandas as pd
import plotly.graph_objects as go

from abundance_loader import AbundanceBundle, load_abundance_bundle
from de_analysis import DEAnalysisEngine, DEResult
from export_engine import ExportData, ExportEngine
from expression_filter import clamp_zero_lengths, drop_missing_covariate, filter_low_expression
from gc_normalization import full_quantile_within_lane
from gene_annotation import AnnotationSource, GeneAnnotator, align_annotation
from gene_panels import CuratedGeneLists
from pipeline_config import PipelineConfig
from qc_plots import create_gc_bias_plot, create_library_size_barplot, create_rle_boxplot
from sample_design import SampleDesign, load_sample_table
from unwanted_variation import (
    UnwantedVariationResult,
    empirical_control_genes,
    remove_unwanted_variation,
)
from visualizations import (
    create_category_heatmaps,
    create_go_barplot,
    create_marker_heatmap,
    create_pca_plot,
    log_expression,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineResult:
    """Outputs of every stage of one run."""

    raw_bundle: AbundanceBundle  # as loaded, zero lengths clamped to 1
    filtered_bundle: AbundanceBundle  # low-expression and GC-less genes removed
    gc_counts: pd.DataFrame  # GC-normalized counts, genes x samples
    annotation: pd.DataFrame  # aligned to filtered_bundle genes
    unwanted: UnwantedVariationResult
    de_results: Dict[Tuple[str, str], DEResult]
    comparison: Tuple[str, str]

    @property
    def design(self) -> SampleDesign:
        return self.unwanted.design

    @property
    def de_result(self) -> DEResult:
        return self.de_results[self.comparison]

    @property
    def significant_genes(self) -> List[str]:
        return self.de_result.significant_df["gene"].tolist()


def first_pass_controls(
    counts: pd.DataFrame,
    design: SampleDesign,
    comparison: Tuple[str, str],
    abundance: pd.DataFrame,
    config: PipelineConfig,
) -> Optional[List[str]]:
    """
    Empirical control genes from a fit without unwanted-variation factors.

    Returns None (all genes are controls) when fewer than k genes remain.
    """
    logger.info("First-pass fit without unwanted-variation factors")
    engine = DEAnalysisEngine(padj_threshold=config.de.padj_threshold, shrink_lfc=False)
    first_pass = engine.run_all_comparisons(counts, design, [comparison], abundance)[comparison]
    controls = empirical_control_genes(
        first_pass.results_df.set_index("gene"), config.de.padj_threshold
    )
    if len(controls) < config.unwanted_variation.k:
        logger.warning(
            f"Only {len(controls)} empirical control genes; using all genes as controls"
        )
        return None
    return controls


def run_pipeline(config: PipelineConfig) -> PipelineResult:
    """Run stages 1-6 and return their outputs."""
    inputs = config.inputs

    bundle = clamp_zero_lengths(load_abundance_bundle(
        config.resolve(inputs.bundle),
        quant_dir=config.resolve(inputs.quant_dir),
        tx2gene_path=config.resolve(inputs.tx2gene),
        quant_type=inputs.quant_type,
        pattern=inputs.quant_pattern,
    ))
    design = load_sample_table(
        config.resolve(inputs.samples),
        sample_column=inputs.sample_column,
        design_factor=config.de.design_factor,
    ).align_to(bundle.samples)
    logger.info(
        "Samples per group: "
        + ", ".join(f"{lvl}={len(design.samples_in(lvl))}" for lvl in design.levels)
    )

    source = AnnotationSource(
        release=config.annotation.release,
        dataset=config.annotation.dataset,
        batch_size=config.annotation.batch_size,
        timeout=config.annotation.timeout,
    )
    annotator = GeneAnnotator(config.resolve(config.annotation.cache_dir), source)
    annotation = annotator.annotate(bundle.genes)

    filtered = filter_low_expression(bundle, design, config.filtering.min_group_median)
    filtered = drop_missing_covariate(filtered, annotation, "gc_content")
    annotation = align_annotation(annotation, filtered.genes)

    gc_counts = full_quantile_within_lane(
        filtered.counts.round().astype(int),
        annotation["gc_content"],
        num_bins=config.gc.num_bins,
    )

    comparison = (config.de.test_level, config.de.reference_level)
    control_genes = None
    if config.unwanted_variation.controls == "empirical":
        control_genes = first_pass_controls(
            gc_counts, design, comparison, filtered.abundance, config
        )
    unwanted = remove_unwanted_variation(
        gc_counts, design, k=config.unwanted_variation.k, control_genes=control_genes
    )

    engine = DEAnalysisEngine(
        padj_threshold=config.de.padj_threshold,
        min_log2_abundance=config.de.min_log2_abundance,
        pseudocount=config.de.pseudocount,
        shrink_lfc=config.de.shrink_lfc,
    )
    de_results = engine.run_all_comparisons(
        gc_counts, unwanted.design, [comparison], filtered.abundance, annotation
    )

    return PipelineResult(
        raw_bundle=bundle,
        filtered_bundle=filtered,
        gc_counts=gc_counts,
        annotation=annotation,
        unwanted=unwanted,
        de_results=de_results,
        comparison=comparison,
    )


def load_curated_lists(config: PipelineConfig) -> CuratedGeneLists:
    return CuratedGeneLists.from_paths(
        markers=config.resolve(config.inputs.markers),
        pathways=config.resolve(config.inputs.pathways),
        go_terms=config.resolve(config.inputs.go_terms),
    )


def render_reports(
    result: PipelineResult,
    config: PipelineConfig,
    curated: Optional[CuratedGeneLists] = None,
) -> Dict[str, go.Figure]:
    """
    Build all figures.

    Curated tables not configured are skipped; `curated` defaults to the
    tables named in `config.inputs`.
    """
    if curated is None:
        curated = load_curated_lists(config)
    pseudocount = config.de.pseudocount
    gc_bins = config.gc.num_bins
    conditions = result.design.sample_conditions()
    log_expr = log_expression(result.unwanted.corrected_counts, pseudocount)
    gc = result.annotation["gc_content"]

    figures: Dict[str, go.Figure] = {
        "qc_library_size": create_library_size_barplot(result.filtered_bundle.counts, conditions),
        "qc_rle_raw": create_rle_boxplot(
            result.filtered_bundle.counts, conditions, title="RLE - raw counts"
        ),
        "qc_rle_normalized": create_rle_boxplot(
            result.unwanted.corrected_counts, conditions, title="RLE - normalized counts"
        ),
        "qc_gc_bias_raw": create_gc_bias_plot(
            result.filtered_bundle.counts, gc, gc_bins, title="GC bias - raw counts"
        ),
        "qc_gc_bias_normalized": create_gc_bias_plot(
            result.gc_counts, gc, gc_bins, title="GC bias - GC-normalized counts"
        ),
        "pca": create_pca_plot(log_expr.T, conditions),
    }

    if curated.markers is not None:
        figures["markers"] = create_marker_heatmap(
            log_expr, result.annotation, curated.markers, conditions
        )
    if curated.pathways is not None:
        heatmaps = create_category_heatmaps(
            log_expr, result.annotation, curated.pathways, conditions
        )
        for category, fig in heatmaps.items():
            figures[f"category_{category.name.lower()}"] = fig
    if curated.go_terms is not None:
        figures["go_terms"] = create_go_barplot(curated.go_terms)

    logger.info(f"Rendered {len(figures)} figures")
    return figures


def export_results(
    result: PipelineResult, figures: Dict[str, go.Figure], config: PipelineConfig
) -> List[Path]:
    engine = ExportEngine(config.resolve(config.outputs.directory))
    export_data = ExportData(
        significant_df=result.de_result.significant_df,
        comparison=result.comparison,
        figures=figures,
        settings={
            "formula": result.de_result.formula,
            "n_significant": result.de_result.n_significant,
            "config": config.to_dict(),
        },
    )
    return engine.export(export_data, export_csv=config.outputs.export_csv)


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Remyelination RNA-seq analysis pipeline")
    parser.add_argument(
        "-c", "--config", default="config/pipeline.yaml",
        help="Pipeline YAML configuration (default: config/pipeline.yaml)",
    )
    parser.add_argument(
        "--log-level", default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = PipelineConfig.from_yaml(args.config)
    result = run_pipeline(config)

    figures: Dict[str, go.Figure] = {}
    if config.outputs.render_figures:
        figures = render_reports(result, config)

    export_results(result, figures, config)
    logger.info(
        f"Done: {result.de_result.n_significant} significant genes for "
        f"{result.comparison[0]} vs {result.comparison[1]}"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())

"""Normalization QC visualizations: library sizes, RLE and GC bias."""

from typing import Dict, Optional
import pandas as pd
import numpy as np
import plotly.graph_objects as go
import plotly.express as px

from gc_normalization import gc_strata


def _condition_colors(sample_conditions: Dict[str, str]) -> Dict[str, str]:
    colors = px.colors.qualitative.Set2
    levels = list(dict.fromkeys(sample_conditions.values()))
    return {c: colors[i % len(colors)] for i, c in enumerate(levels)}


def create_library_size_barplot(
    counts_df: pd.DataFrame, sample_conditions: Optional[Dict[str, str]] = None
) -> go.Figure:
    """
    Bar plot of total counts (library size) per sample.

    Args:
        counts_df: genes × samples DataFrame of raw counts
        sample_conditions: Optional sample → condition mapping for coloring

    Returns:
        Plotly Figure object
    """
    lib_sizes = counts_df.sum(axis=0)
    mean_size = lib_sizes.mean()

    sample_conditions = sample_conditions or {}
    cond_color = _condition_colors(sample_conditions)
    colors = [cond_color.get(sample_conditions.get(s), "steelblue") for s in lib_sizes.index]

    fig = go.Figure()
    fig.add_trace(
        go.Bar(
            x=lib_sizes.index.tolist(),
            y=lib_sizes.values,
            marker_color=colors,
            name="Library Size",
        )
    )
    fig.add_hline(
        y=mean_size,
        line_dash="dash",
        line_color="red",
        annotation_text=f"Mean: {mean_size:,.0f}",
        annotation_position="top right",
    )
    fig.update_layout(
        title="Library Size per Sample",
        xaxis_title="Sample",
        yaxis_title="Total Counts",
        showlegend=False,
    )
    return fig


def relative_log_expression(counts_df: pd.DataFrame) -> pd.DataFrame:
    """log2(count + 1) minus the per-gene median across samples."""
    log_counts = np.log2(counts_df + 1)
    return log_counts.sub(log_counts.median(axis=1), axis=0)


def create_rle_boxplot(
    counts_df: pd.DataFrame,
    sample_conditions: Dict[str, str],
    title: str = "Relative Log Expression",
) -> go.Figure:
    """
    RLE box plot per sample; well-normalized samples center on zero.

    Args:
        counts_df: genes × samples counts (raw or normalized)
        sample_conditions: sample → condition mapping for coloring
    """
    rle = relative_log_expression(counts_df)
    cond_color = _condition_colors(sample_conditions)

    fig = go.Figure()
    for sample in rle.columns:
        cond = sample_conditions.get(sample, "Unknown")
        fig.add_trace(
            go.Box(
                y=rle[sample].values,
                name=str(sample),
                marker_color=cond_color.get(cond, "gray"),
                boxpoints=False,
                showlegend=False,
            )
        )
    fig.add_hline(y=0, line_color="black", line_width=0.5)
    fig.update_layout(
        title=title,
        xaxis_title="Sample",
        yaxis_title="RLE",
    )
    return fig


def create_gc_bias_plot(
    counts_df: pd.DataFrame,
    gc: pd.Series,
    num_bins: int = 10,
    title: str = "GC-content bias",
) -> go.Figure:
    """
    Median log2(count + 1) per GC stratum, one line per sample.

    A flat profile means counts do not depend on GC content.

    Args:
        counts_df: genes × samples counts
        gc: GC content per gene
        num_bins: Number of GC quantile strata
    """
    gc = gc.loc[counts_df.index]
    strata = gc_strata(gc, num_bins)
    centers = gc.groupby(strata).median()
    log_counts = np.log2(counts_df + 1)
    medians = log_counts.groupby(strata).median()

    fig = go.Figure()
    for sample in medians.columns:
        fig.add_trace(
            go.Scatter(
                x=centers.loc[medians.index].values,
                y=medians[sample].values,
                mode="lines+markers",
                name=str(sample),
            )
        )
    fig.update_layout(
        title=title,
        xaxis_title="GC content (%) - stratum median",
        yaxis_title="Median log₂(count + 1)",
    )
    return fig

"""
Report figures for the remyelination analysis using Plotly.

Provides the PCA plot, the marker heatmap, one heatmap per pathway category
and the GO-term bar chart. Heatmaps keep the curated gene order (no
clustering) and share one diverging palette over fixed breakpoints.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Sequence
import warnings
import pandas as pd
import numpy as np
import plotly.graph_objects as go
import plotly.express as px
from plotly.subplots import make_subplots
from sklearn.decomposition import PCA

from gene_panels import panel_expression

# Shared three-color diverging palette; row z-scores are clipped to the limits
DIVERGING_COLORS = ("#2166AC", "#F7F7F7", "#B2182B")
ZSCORE_LIMITS = (-3.0, 3.0)
DIVERGING_COLORSCALE = [
    [0.0, DIVERGING_COLORS[0]],
    [0.5, DIVERGING_COLORS[1]],
    [1.0, DIVERGING_COLORS[2]],
]


@dataclass(frozen=True)
class HeatmapConfig:
    """Rendering configuration of one pathway category heatmap."""

    title: str
    row_height: int = 14
    min_height: int = 350


class PathwayCategory(Enum):
    """Functional categories of the curated pathway table."""

    CHOLESTEROL_SYNTHESIS = "Cholesterol synthesis"
    LIPID_METABOLISM = "Lipid metabolism"
    MYELIN_STRUCTURE = "Myelin structure"
    OLIGODENDROCYTE_DIFFERENTIATION = "Oligodendrocyte differentiation"
    INFLAMMATION = "Inflammation"
    PHAGOCYTOSIS = "Phagocytosis"
    EXTRACELLULAR_MATRIX = "Extracellular matrix"

    @classmethod
    def from_label(cls, label: str) -> Optional["PathwayCategory"]:
        key = str(label).strip().lower()
        for member in cls:
            if member.value.lower() == key:
                return member
        return None

    @property
    def config(self) -> HeatmapConfig:
        return CATEGORY_CONFIGS[self]


CATEGORY_CONFIGS: Dict[PathwayCategory, HeatmapConfig] = {
    PathwayCategory.CHOLESTEROL_SYNTHESIS: HeatmapConfig("Cholesterol biosynthesis"),
    PathwayCategory.LIPID_METABOLISM: HeatmapConfig("Lipid metabolism", row_height=12),
    PathwayCategory.MYELIN_STRUCTURE: HeatmapConfig("Myelin structural genes", row_height=18),
    PathwayCategory.OLIGODENDROCYTE_DIFFERENTIATION: HeatmapConfig(
        "Oligodendrocyte differentiation", row_height=16
    ),
    PathwayCategory.INFLAMMATION: HeatmapConfig("Inflammatory response", row_height=12),
    PathwayCategory.PHAGOCYTOSIS: HeatmapConfig("Phagocytosis and debris clearance"),
    PathwayCategory.EXTRACELLULAR_MATRIX: HeatmapConfig("Extracellular matrix", row_height=12),
}


def log_expression(normalized: pd.DataFrame, pseudocount: float = 0.5) -> pd.DataFrame:
    """log2(normalized + pseudocount); keeps zero counts finite."""
    return np.log2(normalized + pseudocount)


def row_scale(values: pd.DataFrame, limits=ZSCORE_LIMITS) -> pd.DataFrame:
    """Per-row z-scores clipped to `limits`; constant rows become 0."""
    centred = values.sub(values.mean(axis=1), axis=0)
    sd = values.std(axis=1).replace(0, np.nan)
    return centred.div(sd, axis=0).fillna(0.0).clip(*limits)


def _order_samples(samples: Sequence[str], sample_conditions: Dict[str, str]) -> List[str]:
    """Group samples by condition (first-appearance order), stable within groups."""
    levels = list(dict.fromkeys(sample_conditions.get(s, "Unknown") for s in samples))
    return sorted(samples, key=lambda s: levels.index(sample_conditions.get(s, "Unknown")))


def _discrete_colorscale(colors: Sequence[str]) -> list:
    n = len(colors)
    scale = []
    for i, color in enumerate(colors):
        scale.append([i / n, color])
        scale.append([(i + 1) / n, color])
    return scale


def _annotated_heatmap(
    values: pd.DataFrame,
    labels: pd.Series,
    label_name: str,
    sample_conditions: Dict[str, str],
    title: str,
    row_height: int = 14,
    min_height: int = 350,
) -> go.Figure:
    """Fixed-order row-scaled heatmap with a categorical strip on the left."""
    samples = _order_samples(values.columns.tolist(), sample_conditions)
    z = row_scale(values[samples])

    levels = list(dict.fromkeys(labels.tolist()))
    palette = px.colors.qualitative.Set2 + px.colors.qualitative.Pastel1
    colors = [palette[i % len(palette)] for i in range(len(levels))]
    codes = labels.map({lvl: i for i, lvl in enumerate(levels)}).to_numpy()

    fig = make_subplots(
        rows=1, cols=2, shared_yaxes=True,
        column_widths=[0.04, 0.96], horizontal_spacing=0.01,
    )
    fig.add_trace(
        go.Heatmap(
            z=codes.reshape(-1, 1),
            x=[label_name],
            y=z.index.tolist(),
            colorscale=_discrete_colorscale(colors),
            zmin=-0.5,
            zmax=len(levels) - 0.5,
            showscale=False,
            text=labels.to_numpy().reshape(-1, 1),
            hovertemplate="%{y}<br>" + label_name + ": %{text}<extra></extra>",
        ),
        row=1, col=1,
    )
    fig.add_trace(
        go.Heatmap(
            z=z.values,
            x=[f"{s}" for s in samples],
            y=z.index.tolist(),
            colorscale=DIVERGING_COLORSCALE,
            zmin=ZSCORE_LIMITS[0],
            zmax=ZSCORE_LIMITS[1],
            colorbar=dict(title="Row z-score"),
            customdata=np.array(
                [[sample_conditions.get(s, "Unknown") for s in samples]] * len(z)
            ),
            hovertemplate=(
                "Gene: %{y}<br>Sample: %{x} (%{customdata})<br>z: %{z:.2f}<extra></extra>"
            ),
        ),
        row=1, col=2,
    )
    # legend entries for the strip
    for level, color in zip(levels, colors):
        fig.add_trace(
            go.Scatter(
                x=[None], y=[None], mode="markers",
                marker=dict(size=10, color=color, symbol="square"),
                name=str(level), legendgroup=label_name, showlegend=True,
            )
        )

    fig.update_yaxes(autorange="reversed")
    fig.update_xaxes(showticklabels=False, row=1, col=1)
    fig.update_layout(
        title=title,
        height=max(min_height, len(z) * row_height + 150),
        legend_title=label_name.capitalize(),
        template="plotly_white",
    )
    return fig


def create_pca_plot(
    expression_df: pd.DataFrame,
    sample_conditions: Dict[str, str],
    label_samples: bool = True,
) -> go.Figure:
    """
    Samples on the first two principal components, colored by condition.

    Args:
        expression_df: samples × genes (log2 normalized)
        sample_conditions: Dict[sample_name, condition]
        label_samples: Print sample names next to the points

    Returns:
        Plotly Figure object
    """
    if expression_df is None or expression_df.empty:
        raise ValueError("Cannot create PCA plot: no expression values.")
    if expression_df.shape[0] < 2:
        raise ValueError(
            f"Cannot create PCA plot: needs at least 2 samples, got {expression_df.shape[0]}."
        )
    if not sample_conditions:
        raise ValueError("Cannot create PCA plot: sample_conditions is empty.")

    # genes constant across samples carry no information
    values = expression_df.loc[:, expression_df.var(axis=0) > 0]
    n_components = min(2, *values.shape)
    pca = PCA(n_components=n_components)
    scores = pca.fit_transform(values.to_numpy())
    explained = list(pca.explained_variance_ratio_)
    while len(explained) < 2:
        scores = np.column_stack([scores, np.zeros(len(scores))])
        explained.append(0.0)

    coords = pd.DataFrame(scores[:, :2], columns=["PC1", "PC2"], index=expression_df.index)
    coords["condition"] = [sample_conditions.get(s, "Unknown") for s in coords.index]
    coords["sample"] = coords.index.astype(str)

    fig = px.scatter(
        coords,
        x="PC1",
        y="PC2",
        color="condition",
        text="sample" if label_samples else None,
        hover_name="sample",
        category_orders={"condition": list(dict.fromkeys(sample_conditions.values()))},
        color_discrete_sequence=px.colors.qualitative.Set2,
        labels={
            "PC1": f"PC1 ({explained[0] * 100:.1f}%)",
            "PC2": f"PC2 ({explained[1] * 100:.1f}%)",
        },
    )
    fig.update_traces(marker=dict(size=11), textposition="top center")
    fig.update_layout(
        title="PCA of log2 normalized counts",
        legend_title="Condition",
        template="plotly_white",
    )
    return fig


def create_marker_heatmap(
    expression_df: pd.DataFrame,
    annotation: pd.DataFrame,
    markers: pd.DataFrame,
    sample_conditions: Dict[str, str],
    title: str = "Cell lineage markers",
) -> go.Figure:
    """
    Heatmap of marker genes in curated order, labelled by lineage.

    Args:
        expression_df: genes × samples (log2 normalized), indexed by gene id
        annotation: gene annotation with a "symbol" column
        markers: table with "symbol" and "lineage" columns
        sample_conditions: Dict[sample_name, condition]
    """
    rows = panel_expression(expression_df, annotation, markers, panel_name="markers")
    if rows.empty:
        raise ValueError("Cannot create marker heatmap: no marker genes in expression data.")
    return _annotated_heatmap(
        rows[expression_df.columns],
        rows["lineage"].astype(str),
        "lineage",
        sample_conditions,
        title,
    )


def create_category_heatmap(
    expression_df: pd.DataFrame,
    annotation: pd.DataFrame,
    pathways: pd.DataFrame,
    category: PathwayCategory,
    sample_conditions: Dict[str, str],
) -> go.Figure:
    """
    Heatmap of one pathway category, genes in curated order with a module strip.

    Args:
        expression_df: genes × samples (log2 normalized), indexed by gene id
        annotation: gene annotation with a "symbol" column
        pathways: table with "symbol", "category", "module" columns
        category: Which category to draw
        sample_conditions: Dict[sample_name, condition]
    """
    in_category = pathways[
        pathways["category"].map(PathwayCategory.from_label) == category
    ]
    if in_category.empty:
        raise ValueError(f"No pathway genes listed for category '{category.value}'.")

    rows = panel_expression(
        expression_df, annotation, in_category[["symbol", "module"]],
        panel_name=category.value,
    )
    if rows.empty:
        raise ValueError(
            f"Cannot create heatmap for '{category.value}': no genes in expression data."
        )

    config = category.config
    return _annotated_heatmap(
        rows[expression_df.columns],
        rows["module"].astype(str),
        "module",
        sample_conditions,
        config.title,
        row_height=config.row_height,
        min_height=config.min_height,
    )


def create_category_heatmaps(
    expression_df: pd.DataFrame,
    annotation: pd.DataFrame,
    pathways: pd.DataFrame,
    sample_conditions: Dict[str, str],
) -> Dict[PathwayCategory, go.Figure]:
    """
    One heatmap per known category present in `pathways`, in enum order.

    Categories none of whose genes are in the expression data are skipped
    with a warning.
    """
    labels = pathways["category"].dropna().unique()
    unknown = [lbl for lbl in labels if PathwayCategory.from_label(lbl) is None]
    if unknown:
        warnings.warn(f"Skipping unknown pathway categories: {unknown}")

    expressed_symbols = set(annotation["symbol"].reindex(expression_df.index).dropna())
    categories = pathways["category"].map(PathwayCategory.from_label)
    figures = {}
    for category in PathwayCategory:
        listed = pathways.loc[categories == category, "symbol"]
        if listed.empty:
            continue
        if not listed.isin(expressed_symbols).any():
            warnings.warn(
                f"Skipping pathway category '{category.value}': none of its "
                f"{listed.nunique()} genes are in the expression data"
            )
            continue
        figures[category] = create_category_heatmap(
            expression_df, annotation, pathways, category, sample_conditions
        )
    return figures


def create_go_barplot(
    go_terms: pd.DataFrame,
    title: str = "GO term enrichment",
) -> go.Figure:
    """
    Horizontal bar chart of included GO terms, grouped and colored by module.

    Args:
        go_terms: DataFrame with columns: term, score, module, include

    Returns:
        Plotly Figure object
    """
    df = go_terms[go_terms["include"]].copy()
    if df.empty:
        fig = go.Figure()
        fig.update_layout(
            title=title,
            annotations=[dict(
                text="No GO terms selected for display",
                xref="paper", yref="paper",
                x=0.5, y=0.5, showarrow=False, font=dict(size=16)
            )]
        )
        return fig

    modules = list(dict.fromkeys(df["module"].astype(str)))
    df["module"] = df["module"].astype(str)
    df["_module_rank"] = df["module"].map({m: i for i, m in enumerate(modules)})
    df = df.sort_values(["_module_rank", "score"], ascending=[True, False], kind="mergesort")

    fig = px.bar(
        df,
        x="score",
        y="term",
        color="module",
        orientation="h",
        category_orders={"term": df["term"].tolist(), "module": modules},
        color_discrete_sequence=px.colors.qualitative.Set2,
        labels={"score": "Enrichment score", "term": ""},
    )
    fig.update_yaxes(autorange="reversed")
    fig.update_layout(
        title=title,
        height=max(400, len(df) * 22 + 120),
        margin=dict(l=320),
        legend_title="Module",
        template="plotly_white",
    )
    return fig

"""Tests for report figures."""
import pytest
import pandas as pd
import numpy as np
import plotly.graph_objects as go
from demo_data import demo_curated_lists
from visualizations import (
    CATEGORY_CONFIGS,
    DIVERGING_COLORS,
    ZSCORE_LIMITS,
    PathwayCategory,
    create_category_heatmap,
    create_category_heatmaps,
    create_go_barplot,
    create_marker_heatmap,
    create_pca_plot,
    log_expression,
    row_scale,
)


@pytest.fixture
def demo_log_expression(demo_dataset):
    return log_expression(demo_dataset.bundle.counts)


@pytest.fixture
def curated():
    return demo_curated_lists()


def test_every_category_has_a_config():
    assert set(CATEGORY_CONFIGS) == set(PathwayCategory)
    assert len(PathwayCategory) == 7


def test_category_from_label():
    assert PathwayCategory.from_label("myelin structure") is PathwayCategory.MYELIN_STRUCTURE
    assert PathwayCategory.from_label(" Inflammation ") is PathwayCategory.INFLAMMATION
    assert PathwayCategory.from_label("Angiogenesis") is None


def test_log_expression_keeps_zeros_finite():
    values = log_expression(pd.DataFrame({"a": [0.0, 1.5]}))
    assert values["a"].tolist() == [-1.0, 1.0]


def test_row_scale_clips_and_handles_constant_rows():
    values = pd.DataFrame(
        [[0.0] * 9 + [100.0], [5.0] * 10],
        index=["spike", "flat"],
    )
    scaled = row_scale(values)
    assert scaled.max().max() <= ZSCORE_LIMITS[1]
    assert scaled.min().min() >= ZSCORE_LIMITS[0]
    assert (scaled.loc["flat"] == 0).all()


def test_pca_plot(demo_log_expression, demo_dataset):
    fig = create_pca_plot(demo_log_expression.T, demo_dataset.design.sample_conditions())
    assert isinstance(fig, go.Figure)
    assert fig.layout.title.text == "PCA of log2 normalized counts"
    assert len(fig.data) == 2


def test_pca_requires_two_samples(demo_log_expression, demo_dataset):
    with pytest.raises(ValueError, match="at least 2 samples"):
        create_pca_plot(
            demo_log_expression.T.iloc[:1], demo_dataset.design.sample_conditions()
        )


def test_marker_heatmap_keeps_curated_order(demo_log_expression, demo_dataset, curated):
    fig = create_marker_heatmap(
        demo_log_expression, demo_dataset.annotation, curated["markers"],
        demo_dataset.design.sample_conditions(),
    )
    heatmap = fig.data[1]
    assert list(heatmap.y) == curated["markers"]["symbol"].tolist()
    assert heatmap.zmin == ZSCORE_LIMITS[0]
    assert heatmap.zmax == ZSCORE_LIMITS[1]
    assert [c[1] for c in heatmap.colorscale] == list(DIVERGING_COLORS)


def test_heatmap_groups_samples_by_condition(demo_log_expression, demo_dataset, curated):
    shuffled = demo_log_expression[demo_log_expression.columns[::-1]]
    fig = create_marker_heatmap(
        shuffled, demo_dataset.annotation, curated["markers"],
        demo_dataset.design.sample_conditions(),
    )
    conditions = [demo_dataset.design.sample_conditions()[s] for s in fig.data[1].x]
    assert conditions == ["remyelination"] * 6 + ["control"] * 6


def test_missing_marker_warns(demo_log_expression, demo_dataset):
    markers = pd.DataFrame({"symbol": ["Mbp", "Plp1"], "lineage": ["OL", "OL"]})
    with pytest.warns(UserWarning, match="Plp1"):
        fig = create_marker_heatmap(
            demo_log_expression, demo_dataset.annotation, markers,
            demo_dataset.design.sample_conditions(),
        )
    assert list(fig.data[1].y) == ["Mbp"]


def test_category_heatmap_uses_category_config(demo_log_expression, demo_dataset, curated):
    fig = create_category_heatmap(
        demo_log_expression, demo_dataset.annotation, curated["pathways"],
        PathwayCategory.CHOLESTEROL_SYNTHESIS, demo_dataset.design.sample_conditions(),
    )
    assert fig.layout.title.text == PathwayCategory.CHOLESTEROL_SYNTHESIS.config.title
    assert list(fig.data[1].y) == ["Hmgcr"]


def test_category_heatmaps_skip_unknown(demo_log_expression, demo_dataset, curated):
    pathways = pd.concat(
        [
            curated["pathways"],
            pd.DataFrame({"symbol": ["Actb"], "category": ["Angiogenesis"], "module": ["x"]}),
        ],
        ignore_index=True,
    )
    with pytest.warns(UserWarning, match="Angiogenesis"):
        figures = create_category_heatmaps(
            demo_log_expression, demo_dataset.annotation, pathways,
            demo_dataset.design.sample_conditions(),
        )
    assert list(figures) == list(PathwayCategory)


def test_category_without_expressed_genes_is_skipped(demo_log_expression, demo_dataset, curated):
    pathways = curated["pathways"].copy()
    pathways.loc[pathways["category"] == "Inflammation", "symbol"] = "Il1b"
    with pytest.warns(UserWarning, match="Inflammation"):
        figures = create_category_heatmaps(
            demo_log_expression, demo_dataset.annotation, pathways,
            demo_dataset.design.sample_conditions(),
        )
    assert PathwayCategory.INFLAMMATION not in figures
    assert list(figures) == [c for c in PathwayCategory if c is not PathwayCategory.INFLAMMATION]


def test_go_barplot_only_included_terms(curated):
    fig = create_go_barplot(curated["go_terms"])
    terms = set(np.concatenate([trace.y for trace in fig.data]))
    assert "ribosome biogenesis" not in terms
    assert "myelination" in terms


def test_go_barplot_empty_selection(curated):
    go_terms = curated["go_terms"].assign(include=False)
    fig = create_go_barplot(go_terms)
    assert len(fig.data) == 0
    assert fig.layout.annotations[0].text == "No GO terms selected for display"

"""Tests for curated gene list loading and panel lookup."""
import pytest
import pandas as pd
from gene_panels import (
    CuratedGeneLists,
    load_go_terms,
    load_markers,
    load_pathways,
    panel_expression,
)


def test_load_markers_normalizes_headers(tmp_path):
    path = tmp_path / "markers.tsv"
    path.write_text("Symbol\tLineage\nPdgfra\tOPC\nMbp\tOligodendrocyte\n")
    markers = load_markers(path)
    assert markers.columns.tolist() == ["symbol", "lineage"]
    assert markers["symbol"].tolist() == ["Pdgfra", "Mbp"]


def test_load_pathways_missing_column(tmp_path):
    path = tmp_path / "pathways.csv"
    pd.DataFrame({"symbol": ["Hmgcr"], "category": ["Cholesterol synthesis"]}).to_csv(
        path, index=False
    )
    with pytest.raises(ValueError, match="missing columns \\['module'\\]"):
        load_pathways(path)


def test_load_go_terms_include_flags(tmp_path):
    path = tmp_path / "go.csv"
    pd.DataFrame(
        {
            "term": ["a", "b", "c", "d"],
            "score": [3.0, 2.0, 1.0, 0.5],
            "module": ["M1", "M1", "M2", "M2"],
            "include": ["yes", "no", "x", ""],
        }
    ).to_csv(path, index=False)
    go_terms = load_go_terms(path)
    assert go_terms["include"].tolist() == [True, False, True, False]


def test_missing_file():
    with pytest.raises(FileNotFoundError):
        load_markers("does/not/exist.csv")


def test_curated_lists_optional(tmp_path):
    lists = CuratedGeneLists.from_paths()
    assert lists.markers is None and lists.pathways is None and lists.go_terms is None


def test_panel_expression_resolves_symbols(sample_counts_df, sample_annotation):
    panel = pd.DataFrame({"symbol": ["Gene3", "Gene1"], "lineage": ["A", "B"]})
    rows = panel_expression(sample_counts_df, sample_annotation, panel)
    assert rows.index.tolist() == ["Gene3", "Gene1"]
    assert rows.columns.tolist() == ["lineage"] + sample_counts_df.columns.tolist()
    assert rows.loc["Gene1", "sample_1"] == sample_counts_df.iloc[0, 0]


def test_panel_expression_warns_for_missing(sample_counts_df, sample_annotation):
    panel = pd.DataFrame({"symbol": ["Gene1", "Unknown"], "lineage": ["A", "B"]})
    with pytest.warns(UserWarning, match="Unknown"):
        rows = panel_expression(sample_counts_df, sample_annotation, panel, "markers")
    assert rows.index.tolist() == ["Gene1"]

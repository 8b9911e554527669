"""Tests for size factors and unwanted-variation factor estimation."""
import logging
import pytest
import pandas as pd
import numpy as np
from sample_design import SampleDesign
from unwanted_variation import (
    empirical_control_genes,
    estimate_unwanted_factors,
    median_of_ratios,
    remove_unwanted_variation,
    replicate_groups,
)


@pytest.fixture
def nuisance_counts(sample_design):
    """Counts with a planted per-sample nuisance effect of gene-specific strength."""
    rng = np.random.default_rng(11)
    n_genes = 300
    nuisance = np.array([-0.5, 0.0, 0.5, -0.5, 0.0, 0.5])
    loading = rng.normal(0, 1, n_genes)
    base = rng.uniform(100, 1000, n_genes)
    values = base[:, None] * np.exp(np.outer(loading, nuisance))
    counts = pd.DataFrame(
        np.round(values).astype(int),
        index=[f"g{i}" for i in range(n_genes)],
        columns=sample_design.samples,
    )
    return counts, pd.Series(nuisance, index=sample_design.samples)


def test_median_of_ratios_recovers_depth(sample_counts_df):
    depth = np.array([1.0, 2.0, 0.5, 1.0, 4.0, 1.0])
    base = sample_counts_df["sample_1"].to_numpy(dtype=float) + 1
    counts = pd.DataFrame(
        np.outer(base, depth), index=sample_counts_df.index, columns=sample_counts_df.columns
    )
    size_factors, normalized = median_of_ratios(counts)

    assert size_factors.index.tolist() == counts.columns.tolist()
    ratios = size_factors / size_factors.iloc[0]
    np.testing.assert_allclose(ratios.values, depth, rtol=1e-6)
    pd.testing.assert_frame_equal(
        normalized, counts.div(size_factors, axis=1), check_names=False
    )


def test_replicate_groups(sample_design):
    assert replicate_groups(sample_design) == [[0, 1, 2], [3, 4, 5]]


def test_factor_shape_and_names(sample_counts_df, sample_design):
    _, normalized = median_of_ratios(sample_counts_df + 1)
    factors, corrected = estimate_unwanted_factors(normalized, sample_design, k=2)
    assert factors.shape == (6, 2)
    assert factors.columns.tolist() == ["W1", "W2"]
    assert factors.index.tolist() == sample_design.samples
    assert corrected.shape == normalized.shape
    assert (corrected >= 0).all().all()


def test_factor_tracks_planted_nuisance(nuisance_counts, sample_design):
    counts, nuisance = nuisance_counts
    result = remove_unwanted_variation(counts, sample_design, k=1)
    corr = np.corrcoef(result.factors["W1"].values, nuisance.values)[0, 1]
    assert abs(corr) > 0.9


def test_design_extended_in_count_column_order(sample_counts_df, sample_design):
    shuffled = sample_design.align_to(sample_design.samples[::-1])
    result = remove_unwanted_variation(sample_counts_df, shuffled, k=1)
    assert result.design.samples == sample_counts_df.columns.tolist()
    assert result.design.covariates == ["W1"]
    pd.testing.assert_series_equal(
        result.design.table["W1"], result.factors["W1"], check_names=False
    )


def test_k_larger_than_residual_rank(caplog):
    rng = np.random.default_rng(5)
    samples = ["a1", "a2", "b1", "b2"]
    design = SampleDesign(
        pd.DataFrame({"condition": ["A", "A", "B", "B"]}, index=samples)
    )
    normalized = pd.DataFrame(
        rng.uniform(50, 500, size=(100, 4)), columns=samples
    )
    with caplog.at_level(logging.WARNING, logger="unwanted_variation"):
        factors, _ = estimate_unwanted_factors(normalized, design, k=5)
    assert factors.shape[1] == 2
    assert "using k=2" in caplog.text


def test_requires_replicates():
    design = SampleDesign(pd.DataFrame({"condition": ["A", "B"]}, index=["s1", "s2"]))
    normalized = pd.DataFrame({"s1": [10.0, 20.0], "s2": [12.0, 18.0]})
    with pytest.raises(ValueError, match="2\\+ replicates"):
        estimate_unwanted_factors(normalized, design)


def test_unknown_control_genes(sample_counts_df, sample_design):
    with pytest.raises(ValueError, match="control genes"):
        remove_unwanted_variation(sample_counts_df + 1, sample_design, control_genes=["nope"])


def test_factors_independent_of_sample_order(nuisance_counts, sample_design):
    counts, _ = nuisance_counts
    baseline = remove_unwanted_variation(counts, sample_design, k=1)

    order = ["sample_6", "sample_2", "sample_4", "sample_1", "sample_5", "sample_3"]
    permuted = remove_unwanted_variation(counts[order], sample_design, k=1)

    pd.testing.assert_frame_equal(
        permuted.factors.loc[sample_design.samples], baseline.factors, atol=1e-8
    )


def test_empirical_controls_keep_group_shift_out_of_factors(nuisance_counts, sample_design):
    counts, nuisance = nuisance_counts
    remy = sample_design.samples_in("remyelination")
    shifted = counts.astype(float)
    shifted.loc[counts.index[:30], remy] *= 8
    controls = counts.index[30:].tolist()

    result = remove_unwanted_variation(shifted.round(), sample_design, k=1, control_genes=controls)

    w1 = result.factors["W1"]
    group_gap = abs(w1[sample_design.samples_in("control")].mean() - w1[remy].mean())
    assert group_gap < 0.05 * np.ptp(w1.values)
    assert abs(np.corrcoef(w1.values, nuisance.values)[0, 1]) > 0.9
    assert result.control_genes == controls


def test_empirical_control_genes_excludes_significant():
    first_pass = pd.DataFrame(
        {"padj": [1e-10, 0.2, np.nan, 0.049, 0.9]},
        index=["de_up", "flat_1", "low_count", "de_down", "flat_2"],
    )
    assert empirical_control_genes(first_pass, 0.05) == ["flat_1", "low_count", "flat_2"]


def test_too_few_control_genes(nuisance_counts, sample_design):
    counts, _ = nuisance_counts
    with pytest.raises(ValueError, match="at least 2 control genes"):
        remove_unwanted_variation(counts, sample_design, k=2, control_genes=["g0"])

"""Tests for the sample design table."""
import pytest
import pandas as pd
from sample_design import SampleDesign, load_sample_table


def test_load_sample_table(tmp_path):
    path = tmp_path / "samples.csv"
    pd.DataFrame(
        {"sample": ["a", "b", "c"], "condition": ["control", "remyelination", "control"],
         "batch": ["1", "1", "2"]}
    ).to_csv(path, index=False)
    design = load_sample_table(path)
    assert design.samples == ["a", "b", "c"]
    assert design.levels == ["control", "remyelination"]
    assert design.covariates == []


def test_load_sample_table_missing_factor(tmp_path):
    path = tmp_path / "samples.csv"
    pd.DataFrame({"sample": ["a"], "group": ["control"]}).to_csv(path, index=False)
    with pytest.raises(ValueError, match="missing columns"):
        load_sample_table(path)


def test_samples_in_unknown_level(sample_design):
    with pytest.raises(ValueError, match="Unknown condition level"):
        sample_design.samples_in("treatment")


def test_align_to_reorders_rows(sample_design):
    order = sample_design.samples[::-1]
    aligned = sample_design.align_to(order)
    assert aligned.samples == order
    assert aligned.groups.tolist() == sample_design.groups.tolist()[::-1]


def test_align_to_rejects_other_samples(sample_design):
    with pytest.raises(ValueError, match="do not match"):
        sample_design.align_to(sample_design.samples[:-1] + ["other"])


def test_with_covariates_joins_by_sample(sample_design):
    factors = pd.DataFrame(
        {"W1": [0.1, 0.2, 0.3, 0.4, 0.5, 0.6]},
        index=sample_design.samples[::-1],
    )
    extended = sample_design.with_covariates(factors)
    assert extended.samples == sample_design.samples
    assert extended.covariates == ["W1"]
    assert extended.table.loc["sample_1", "W1"] == 0.6


def test_duplicate_samples_rejected():
    table = pd.DataFrame({"condition": ["a", "b"]}, index=["s1", "s1"])
    with pytest.raises(ValueError, match="duplicated"):
        SampleDesign(table)

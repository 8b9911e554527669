"""
Pytest configuration and fixtures for the remyelination analysis tests.
"""

from unittest.mock import MagicMock
import pytest
import pandas as pd
import numpy as np

from abundance_loader import AbundanceBundle
from demo_data import load_demo_dataset, write_demo_project
from sample_design import SampleDesign


# ============================================================================
# Sample Data Fixtures
# ============================================================================


@pytest.fixture
def sample_design():
    """
    Two-group design: 3 control + 3 remyelination samples.
    """
    samples = [f"sample_{i + 1}" for i in range(6)]
    table = pd.DataFrame(
        {"condition": ["control"] * 3 + ["remyelination"] * 3},
        index=pd.Index(samples, name="sample"),
    )
    return SampleDesign(table)


@pytest.fixture
def sample_conditions_dict(sample_design):
    """Sample conditions dictionary for testing."""
    return sample_design.sample_conditions()


@pytest.fixture
def sample_counts_df():
    """
    Sample RNA-seq count matrix for testing.
    Shape: (200 genes, 6 samples), genes x samples
    """
    np.random.seed(42)
    data = np.random.negative_binomial(n=10, p=0.05, size=(200, 6))
    genes = [f"ENSMUSG{i + 1:011d}" for i in range(200)]
    samples = [f"sample_{i + 1}" for i in range(6)]
    df = pd.DataFrame(data, index=genes, columns=samples)
    df.index.name = "gene_id"
    return df


@pytest.fixture
def sample_gc(sample_counts_df):
    """GC content percentage per gene of sample_counts_df."""
    rng = np.random.default_rng(7)
    return pd.Series(
        rng.uniform(35, 65, len(sample_counts_df)),
        index=sample_counts_df.index,
        name="gc_content",
    )


@pytest.fixture
def sample_bundle(sample_counts_df):
    """AbundanceBundle over sample_counts_df with constant gene lengths."""
    lengths = pd.DataFrame(
        1500.0, index=sample_counts_df.index, columns=sample_counts_df.columns
    )
    rate = sample_counts_df / lengths
    abundance = rate / rate.sum(axis=0) * 1e6
    return AbundanceBundle(
        counts=sample_counts_df.astype(float), lengths=lengths, abundance=abundance
    )


@pytest.fixture
def sample_annotation(sample_counts_df, sample_gc):
    """Annotation table for sample_counts_df indexed by gene id."""
    return pd.DataFrame(
        {
            "symbol": [f"Gene{i + 1}" for i in range(len(sample_counts_df))],
            "biotype": "protein_coding",
            "description": "test gene",
            "gc_content": sample_gc.values,
        },
        index=pd.Index(sample_counts_df.index, name="gene_id"),
    )


# ============================================================================
# Demo Dataset Fixtures
# ============================================================================


@pytest.fixture
def demo_dataset():
    """Synthetic experiment: 2 differential + 8 flat genes, 6 vs 6 samples."""
    return load_demo_dataset()


@pytest.fixture
def demo_project(tmp_path, demo_dataset):
    """Demo dataset written as a pipeline project; returns the config path."""
    return write_demo_project(tmp_path / "project", dataset=demo_dataset)


# ============================================================================
# External API Mocking Fixtures
# ============================================================================


BIOMART_HEADER = "Gene stable ID\tGene name\tGene type\tGene description\tGene % GC content"


@pytest.fixture
def biomart_reply():
    """BioMart TSV reply for the first three demo genes."""
    rows = [
        "ENSMUSG00000000001\tMbp\tprotein_coding\tmyelin basic protein\t52.10",
        "ENSMUSG00000000002\tLpl\tprotein_coding\tlipoprotein lipase\t41.37",
        "ENSMUSG00000000003\tActb\tprotein_coding\tactin, beta\t55.02",
    ]
    return "\n".join([BIOMART_HEADER] + rows) + "\n"


@pytest.fixture
def mock_biomart_session(biomart_reply):
    """requests.Session stand-in whose post() returns `biomart_reply`."""
    response = MagicMock()
    response.text = biomart_reply
    response.raise_for_status = MagicMock()
    session = MagicMock()
    session.post = MagicMock(return_value=response)
    return session

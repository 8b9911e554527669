"""
Abundance loading for transcript-level quantifications.

Reads one Salmon or kallisto quantification file per sample, summarizes
transcripts to genes and keeps counts, lengths and abundances aligned in an
immutable AbundanceBundle (genes x samples).
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union
import logging
import pandas as pd
import numpy as np

from table_utils import require_same_keys, strip_version

logger = logging.getLogger(__name__)

PathType = Union[str, Path]

# Canonical transcript table columns per quantifier
QUANT_COLUMNS = {
    "salmon": {
        "Name": "transcript_id",
        "Length": "length",
        "EffectiveLength": "effective_length",
        "TPM": "abundance",
        "NumReads": "count",
    },
    "kallisto": {
        "target_id": "transcript_id",
        "length": "length",
        "eff_length": "effective_length",
        "tpm": "abundance",
        "est_counts": "count",
    },
}

DEFAULT_PATTERNS = {"salmon": "*.sf", "kallisto": "*.tsv"}


@dataclass(frozen=True)
class AbundanceBundle:
    """
    Aligned gene-level matrices (genes x samples).

    counts, lengths and abundance always share the same index and columns in
    the same order. Operations return a new bundle and never modify in place.
    """

    counts: pd.DataFrame
    lengths: pd.DataFrame
    abundance: pd.DataFrame

    def __post_init__(self):
        for name in ("lengths", "abundance"):
            other = getattr(self, name)
            if not other.index.equals(self.counts.index):
                raise ValueError(
                    f"AbundanceBundle misaligned: {name} genes differ from counts genes."
                )
            if not other.columns.equals(self.counts.columns):
                raise ValueError(
                    f"AbundanceBundle misaligned: {name} samples differ from counts samples."
                )
        if not self.counts.index.is_unique:
            raise ValueError("AbundanceBundle has duplicated gene identifiers.")
        if not self.counts.columns.is_unique:
            raise ValueError("AbundanceBundle has duplicated sample identifiers.")

    @property
    def genes(self) -> List[str]:
        return self.counts.index.tolist()

    @property
    def samples(self) -> List[str]:
        return self.counts.columns.tolist()

    @property
    def shape(self):
        return self.counts.shape

    def subset_genes(self, genes: Sequence[str]) -> "AbundanceBundle":
        """Keep `genes` (must all be present), in the given order."""
        genes = list(genes)
        unknown = [g for g in genes if g not in self.counts.index]
        if unknown:
            raise KeyError(f"Genes not in bundle: {unknown[:5]}")
        return AbundanceBundle(
            counts=self.counts.loc[genes].copy(),
            lengths=self.lengths.loc[genes].copy(),
            abundance=self.abundance.loc[genes].copy(),
        )

    def reorder_samples(self, samples: Sequence[str]) -> "AbundanceBundle":
        samples = require_same_keys(samples, self.samples, "Bundle samples")
        return AbundanceBundle(
            counts=self.counts[samples].copy(),
            lengths=self.lengths[samples].copy(),
            abundance=self.abundance[samples].copy(),
        )

    def with_counts(self, counts: pd.DataFrame) -> "AbundanceBundle":
        """Replace the count matrix; lengths and abundance are carried over."""
        return AbundanceBundle(
            counts=counts,
            lengths=self.lengths.copy(),
            abundance=self.abundance.copy(),
        )

    def with_lengths(self, lengths: pd.DataFrame) -> "AbundanceBundle":
        return AbundanceBundle(
            counts=self.counts.copy(),
            lengths=lengths,
            abundance=self.abundance.copy(),
        )

    def save(self, path: PathType) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        pd.to_pickle(
            {"counts": self.counts, "lengths": self.lengths, "abundance": self.abundance},
            path,
        )

    @classmethod
    def load(cls, path: PathType) -> "AbundanceBundle":
        payload = pd.read_pickle(Path(path))
        return cls(
            counts=payload["counts"],
            lengths=payload["lengths"],
            abundance=payload["abundance"],
        )


def read_quant_file(path: PathType, quant_type: str = "salmon") -> pd.DataFrame:
    """
    Read one transcript quantification file into canonical columns.

    Args:
        path: quant.sf (Salmon) or abundance.tsv (kallisto)
        quant_type: "salmon" or "kallisto"

    Returns:
        DataFrame with columns transcript_id, length, effective_length,
        abundance, count
    """
    if quant_type not in QUANT_COLUMNS:
        raise ValueError(
            f"Unknown quant_type '{quant_type}'. Available: {', '.join(QUANT_COLUMNS)}"
        )
    mapping = QUANT_COLUMNS[quant_type]

    df = pd.read_csv(path, sep="\t")
    missing = [col for col in mapping if col not in df.columns]
    if missing:
        raise ValueError(
            f"{path}: missing {quant_type} columns {missing}. "
            f"Found columns: {', '.join(df.columns.tolist())}"
        )

    df = df[list(mapping)].rename(columns=mapping)
    df["transcript_id"] = df["transcript_id"].astype(str)
    return df


def read_tx2gene(path: PathType) -> pd.DataFrame:
    """Read a transcript -> gene table (first two columns are used)."""
    df = pd.read_csv(path, sep=None, engine="python")
    if df.shape[1] < 2:
        raise ValueError(f"{path}: tx2gene needs transcript and gene columns.")
    df = df.iloc[:, :2].copy()
    df.columns = ["transcript_id", "gene_id"]
    df["transcript_id"] = df["transcript_id"].astype(str)
    df["gene_id"] = df["gene_id"].astype(str)
    return df


def _summarize_sample(tx: pd.DataFrame, tx2gene: pd.DataFrame) -> pd.DataFrame:
    """Gene-level count, abundance and length for one sample."""
    keyed = tx.assign(_key=tx["transcript_id"].map(strip_version))
    mapping = tx2gene.assign(_key=tx2gene["transcript_id"].map(strip_version))
    mapping = mapping.drop_duplicates("_key")[["_key", "gene_id"]]

    merged = keyed.merge(mapping, on="_key", how="inner")
    n_unmapped = len(keyed) - len(merged)
    if n_unmapped > 0:
        logger.warning(f"{n_unmapped} transcripts missing from tx2gene were dropped")

    merged["_weighted"] = merged["abundance"] * merged["effective_length"]
    grouped = merged.groupby("gene_id", sort=True)
    genes = pd.DataFrame(
        {
            "count": grouped["count"].sum(),
            "abundance": grouped["abundance"].sum(),
            "_weighted": grouped["_weighted"].sum(),
            "_mean_length": grouped["effective_length"].mean(),
        }
    )
    with np.errstate(divide="ignore", invalid="ignore"):
        weighted_length = genes["_weighted"] / genes["abundance"]
    genes["length"] = weighted_length.where(genes["abundance"] > 0, genes["_mean_length"])
    return genes[["count", "abundance", "length"]]


def summarize_to_genes(
    tables: Dict[str, pd.DataFrame], tx2gene: pd.DataFrame
) -> AbundanceBundle:
    """
    Summarize transcript tables to an AbundanceBundle.

    Counts and abundances are summed per gene. Gene length is the
    abundance-weighted mean effective length, or the plain mean effective
    length where the gene has no abundance in that sample.

    Args:
        tables: sample_id -> canonical transcript table (see read_quant_file)
        tx2gene: transcript_id -> gene_id table

    Returns:
        AbundanceBundle with samples in the order of `tables`
    """
    if not tables:
        raise ValueError("No quantification tables to summarize")

    per_sample = {sample: _summarize_sample(tx, tx2gene) for sample, tx in tables.items()}

    counts = pd.concat({s: g["count"] for s, g in per_sample.items()}, axis=1).fillna(0.0)
    abundance = pd.concat({s: g["abundance"] for s, g in per_sample.items()}, axis=1).fillna(0.0)
    lengths = pd.concat({s: g["length"] for s, g in per_sample.items()}, axis=1)
    # genes absent from a sample take their mean length across the other samples
    lengths = lengths.apply(lambda row: row.fillna(row.mean()), axis=1)

    for df in (counts, abundance, lengths):
        df.index.name = "gene_id"
        df.columns.name = None

    return AbundanceBundle(counts=counts, lengths=lengths, abundance=abundance)


def discover_quant_files(
    quant_dir: PathType, quant_type: str = "salmon", pattern: Optional[str] = None
) -> Dict[str, Path]:
    """Map sample id (file-name stem) to quantification file, sorted by name."""
    quant_dir = Path(quant_dir)
    pattern = pattern or DEFAULT_PATTERNS[quant_type]
    files = sorted(quant_dir.glob(pattern))
    if not files:
        raise FileNotFoundError(f"No '{pattern}' quantification files in {quant_dir}")

    samples: Dict[str, Path] = {}
    for f in files:
        if f.stem in samples:
            raise ValueError(f"Duplicate sample id '{f.stem}' in {quant_dir}")
        samples[f.stem] = f
    return samples


def import_quantifications(
    quant_dir: PathType,
    tx2gene_path: PathType,
    quant_type: str = "salmon",
    pattern: Optional[str] = None,
) -> AbundanceBundle:
    """Import every per-sample quantification file found in `quant_dir`."""
    files = discover_quant_files(quant_dir, quant_type, pattern)
    logger.info(f"Importing {len(files)} {quant_type} quantifications from {quant_dir}")
    tables = {sample: read_quant_file(path, quant_type) for sample, path in files.items()}
    bundle = summarize_to_genes(tables, read_tx2gene(tx2gene_path))
    logger.info(f"Abundance bundle: {bundle.shape[0]} genes x {bundle.shape[1]} samples")
    return bundle


def load_abundance_bundle(
    bundle_path: Optional[PathType],
    quant_dir: Optional[PathType] = None,
    tx2gene_path: Optional[PathType] = None,
    quant_type: str = "salmon",
    pattern: Optional[str] = None,
) -> AbundanceBundle:
    """
    Load the persisted bundle, or import the quantifications and persist them.

    Args:
        bundle_path: Serialized bundle; reused when it exists, written otherwise
        quant_dir: Directory of per-sample quantification files (fallback)
        tx2gene_path: transcript -> gene table (fallback)
        quant_type: "salmon" or "kallisto"
        pattern: Glob for quantification files (default by quant_type)
    """
    if bundle_path is not None and Path(bundle_path).exists():
        logger.info(f"Loading abundance bundle from {bundle_path}")
        return AbundanceBundle.load(bundle_path)

    if quant_dir is None or tx2gene_path is None:
        raise FileNotFoundError(
            f"Abundance bundle {bundle_path} not found and no quantification "
            f"directory/tx2gene table configured to rebuild it."
        )

    bundle = import_quantifications(quant_dir, tx2gene_path, quant_type, pattern)
    if bundle_path is not None:
        bundle.save(bundle_path)
        logger.info(f"Saved abundance bundle to {bundle_path}")
    return bundle

"""
Gene annotation from a pinned Ensembl BioMart archive.

Annotations (symbol, biotype, description, GC content) are read from a local
cache when present; otherwise BioMart is queried once and the cache written.
The archive release is part of the cache file name so cached results never
mix releases.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence
from xml.sax.saxutils import quoteattr
import io
import logging
import pandas as pd
import requests

from table_utils import strip_version

logger = logging.getLogger(__name__)

ANNOTATION_COLUMNS = ["symbol", "biotype", "description", "gc_content"]

# BioMart attribute -> annotation column
BIOMART_ATTRIBUTES = {
    "ensembl_gene_id": "gene_key",
    "external_gene_name": "symbol",
    "gene_biotype": "biotype",
    "description": "description",
    "percentage_gene_gc_content": "gc_content",
}


class AnnotationError(RuntimeError):
    """Raised when BioMart returns something other than the requested table."""


@dataclass(frozen=True)
class AnnotationSource:
    """A fixed Ensembl archive release and BioMart dataset."""

    release: str = "jan2020"
    dataset: str = "mmusculus_gene_ensembl"
    batch_size: int = 500
    timeout: Optional[float] = None

    @property
    def host(self) -> str:
        return f"https://{self.release}.archive.ensembl.org"

    @property
    def martservice_url(self) -> str:
        return f"{self.host}/biomart/martservice"

    def cache_name(self) -> str:
        return f"{self.dataset}.{self.release}.annotation.csv"


def build_biomart_query(dataset: str, gene_keys: Sequence[str]) -> str:
    """BioMart XML query for the annotation attributes of `gene_keys`."""
    attributes = "\n".join(
        f"    <Attribute name={quoteattr(name)} />" for name in BIOMART_ATTRIBUTES
    )
    values = ",".join(gene_keys)
    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        "<!DOCTYPE Query>\n"
        '<Query virtualSchemaName="default" formatter="TSV" header="1" '
        'uniqueRows="1" datasetConfigVersion="0.6">\n'
        f"  <Dataset name={quoteattr(dataset)} interface=\"default\">\n"
        f"    <Filter name=\"ensembl_gene_id\" value={quoteattr(values)} />\n"
        f"{attributes}\n"
        "  </Dataset>\n"
        "</Query>"
    )


def parse_biomart_response(text: str) -> pd.DataFrame:
    """
    Parse a BioMart TSV reply into annotation columns keyed by gene_key.

    Raises:
        AnnotationError: If the reply is a BioMart error or lacks the header
    """
    if text.lstrip().startswith("Query ERROR"):
        raise AnnotationError(f"BioMart query failed: {text.strip()[:300]}")

    df = pd.read_csv(io.StringIO(text), sep="\t", dtype=str)
    # With header="1" BioMart labels columns by display name; position is stable
    if df.shape[1] != len(BIOMART_ATTRIBUTES):
        raise AnnotationError(
            f"Unexpected BioMart reply with {df.shape[1]} columns "
            f"(expected {len(BIOMART_ATTRIBUTES)}): {df.columns.tolist()}"
        )
    df.columns = list(BIOMART_ATTRIBUTES.values())
    df["gc_content"] = pd.to_numeric(df["gc_content"], errors="coerce")
    return df.drop_duplicates("gene_key").set_index("gene_key")


class GeneAnnotator:
    """Cache-first gene annotation backed by an archived BioMart."""

    def __init__(
        self,
        cache_dir: Path,
        source: Optional[AnnotationSource] = None,
        session: Optional[requests.Session] = None,
    ):
        self.source = source or AnnotationSource()
        self.cache_path = Path(cache_dir) / self.source.cache_name()
        self.session = session or requests.Session()

    def query_biomart(self, gene_keys: Sequence[str]) -> pd.DataFrame:
        """Query BioMart in batches; network errors propagate."""
        frames: List[pd.DataFrame] = []
        size = self.source.batch_size
        for start in range(0, len(gene_keys), size):
            batch = list(gene_keys[start:start + size])
            logger.info(
                f"Querying {self.source.martservice_url} for genes "
                f"{start + 1}-{start + len(batch)} of {len(gene_keys)}"
            )
            resp = self.session.post(
                self.source.martservice_url,
                data={"query": build_biomart_query(self.source.dataset, batch)},
                timeout=self.source.timeout,
            )
            resp.raise_for_status()
            frames.append(parse_biomart_response(resp.text))

        if not frames:
            return pd.DataFrame(columns=ANNOTATION_COLUMNS)
        table = pd.concat(frames)
        return table[~table.index.duplicated()]

    def read_cache(self) -> pd.DataFrame:
        table = pd.read_csv(self.cache_path, dtype={"gene_key": str}).set_index("gene_key")
        missing = [c for c in ANNOTATION_COLUMNS if c not in table.columns]
        if missing:
            raise AnnotationError(f"Annotation cache {self.cache_path} lacks columns {missing}")
        return table[ANNOTATION_COLUMNS]

    def write_cache(self, table: pd.DataFrame) -> None:
        self.cache_path.parent.mkdir(parents=True, exist_ok=True)
        table.rename_axis("gene_key").to_csv(self.cache_path)

    def annotate(self, gene_ids: Sequence[str]) -> pd.DataFrame:
        """
        Annotation table for `gene_ids`.

        The cache is read first; genes it does not cover are queried from
        BioMart and appended to it. Genes the archive does not know are cached
        as empty rows so they are not queried again.

        Args:
            gene_ids: Gene identifiers, versioned or not

        Returns:
            DataFrame indexed by the given ids (same order, one row each) with
            columns symbol, biotype, description, gc_content. Genes unknown to
            the archive have missing values.
        """
        gene_ids = [str(g) for g in gene_ids]
        keys = pd.Index([strip_version(g) for g in gene_ids])

        table = None
        if self.cache_path.exists():
            logger.info(f"Reading gene annotation cache {self.cache_path}")
            table = self.read_cache()

        missing = [k for k in keys.unique() if table is None or k not in table.index]
        if missing:
            fetched = self.query_biomart(missing)[ANNOTATION_COLUMNS]
            unknown = [k for k in missing if k not in fetched.index]
            fetched = fetched.reindex(fetched.index.append(pd.Index(unknown)))
            table = fetched if table is None else pd.concat([table, fetched])
            table = table[~table.index.duplicated()]
            self.write_cache(table)
            logger.info(f"Wrote {len(missing)} genes to annotation cache {self.cache_path}")

        annotation = table.reindex(keys)
        annotation.index = pd.Index(gene_ids, name="gene_id")

        n_missing = int(annotation["symbol"].isna().sum())
        if n_missing:
            logger.warning(f"{n_missing} of {len(gene_ids)} genes have no annotation")
        return annotation


def align_annotation(annotation: pd.DataFrame, genes: Sequence[str]) -> pd.DataFrame:
    """Re-index annotation to `genes` (all must be present), keeping their order."""
    genes = list(genes)
    unknown = [g for g in genes if g not in annotation.index]
    if unknown:
        raise ValueError(f"Annotation lacks {len(unknown)} genes, e.g. {unknown[:3]}")
    return annotation.loc[genes].copy()

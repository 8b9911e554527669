"""
Curated gene lists for the remyelination reports.

Three reference tables authored outside the pipeline:
- markers: gene symbol + cell lineage
- pathways: gene symbol + functional category + module
- GO terms: enrichment score + module + inclusion flag
"""

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union
import warnings
import pandas as pd

PathType = Union[str, Path]

MARKER_COLUMNS = ["symbol", "lineage"]
PATHWAY_COLUMNS = ["symbol", "category", "module"]
GO_COLUMNS = ["term", "score", "module", "include"]

TRUE_VALUES = {"true", "t", "yes", "y", "1", "x"}


def _read_table(path: PathType, required: List[str], what: str) -> pd.DataFrame:
    table_file = Path(path)
    if not table_file.exists():
        raise FileNotFoundError(f"{what} table not found: {path}")

    df = pd.read_csv(table_file, sep=None, engine="python")
    df.columns = [str(c).strip().lower() for c in df.columns]
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise ValueError(
            f"{what} table {path} is missing columns {missing}. "
            f"Found columns: {', '.join(df.columns)}"
        )
    return df


def load_markers(path: PathType) -> pd.DataFrame:
    """Marker genes with lineage labels, in file order."""
    df = _read_table(path, MARKER_COLUMNS, "Marker")
    return df[MARKER_COLUMNS].dropna(subset=["symbol"]).reset_index(drop=True)


def load_pathways(path: PathType) -> pd.DataFrame:
    """Pathway genes with category and module labels, in file order."""
    df = _read_table(path, PATHWAY_COLUMNS, "Pathway")
    return df[PATHWAY_COLUMNS].dropna(subset=["symbol", "category"]).reset_index(drop=True)


def load_go_terms(path: PathType) -> pd.DataFrame:
    """
    GO-term enrichment scores.

    The `include` column accepts booleans or yes/no/1/0/x style flags.
    """
    df = _read_table(path, GO_COLUMNS, "GO term")[GO_COLUMNS].copy()
    df["score"] = pd.to_numeric(df["score"], errors="raise")
    if df["include"].dtype != bool:
        df["include"] = df["include"].astype(str).str.strip().str.lower().isin(TRUE_VALUES)
    return df.reset_index(drop=True)


@dataclass(frozen=True)
class CuratedGeneLists:
    """Reference tables; any of them may be absent."""

    markers: Optional[pd.DataFrame] = None
    pathways: Optional[pd.DataFrame] = None
    go_terms: Optional[pd.DataFrame] = None

    @classmethod
    def from_paths(
        cls,
        markers: Optional[PathType] = None,
        pathways: Optional[PathType] = None,
        go_terms: Optional[PathType] = None,
    ) -> "CuratedGeneLists":
        return cls(
            markers=load_markers(markers) if markers else None,
            pathways=load_pathways(pathways) if pathways else None,
            go_terms=load_go_terms(go_terms) if go_terms else None,
        )


def panel_expression(
    expression_df: pd.DataFrame,
    annotation: pd.DataFrame,
    panel: pd.DataFrame,
    panel_name: str = "panel",
) -> pd.DataFrame:
    """
    Expression rows for the panel genes, in panel order.

    Symbols are resolved to gene ids through the annotation table. Symbols not
    found in the expression data are dropped with a warning; if a symbol maps
    to several genes the first one in expression order is used.

    Args:
        expression_df: genes x samples (log2 normalized), indexed by gene id
        annotation: gene annotation indexed by gene id with a "symbol" column
        panel: table with a "symbol" column plus label columns
        panel_name: Name used in warnings

    Returns:
        DataFrame indexed by symbol: the panel's label columns followed by
        one column per sample
    """
    if expression_df is None or expression_df.empty:
        raise ValueError("expression_df cannot be None or empty")

    symbols = annotation["symbol"].reindex(expression_df.index).dropna()
    symbol_to_gene = pd.Series(symbols.index, index=symbols.values)
    symbol_to_gene = symbol_to_gene[~symbol_to_gene.index.duplicated()]

    panel = panel.drop_duplicates("symbol")
    present = panel["symbol"].isin(symbol_to_gene.index)
    missing_genes = panel.loc[~present, "symbol"].tolist()
    if missing_genes:
        warnings.warn(
            f"Panel '{panel_name}': {len(missing_genes)}/{len(panel)} genes missing from expression data: {missing_genes}"
        )

    kept = panel[present].set_index("symbol")
    values = expression_df.loc[symbol_to_gene.loc[kept.index].tolist()]
    values.index = kept.index
    return kept.join(values)

"""Sample design table: experimental group per sample plus estimated covariates."""

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Sequence, Union
import pandas as pd

from table_utils import join_by_key, require_same_keys


@dataclass(frozen=True)
class SampleDesign:
    """
    Samples x variables table indexed by sample id.

    `table` always contains the categorical `design_factor` column; continuous
    covariates (W1..Wk) are appended by `with_covariates`. Row order is the
    sample column order of the bundle the design was aligned to.
    """

    table: pd.DataFrame
    design_factor: str = "condition"

    def __post_init__(self):
        if self.design_factor not in self.table.columns:
            raise ValueError(
                f"Sample design is missing the '{self.design_factor}' column. "
                f"Found columns: {', '.join(map(str, self.table.columns))}"
            )
        if not self.table.index.is_unique:
            raise ValueError("Sample design has duplicated sample identifiers.")
        if self.table[self.design_factor].isna().any():
            raise ValueError(f"Sample design has samples without a '{self.design_factor}'.")

    @property
    def samples(self) -> List[str]:
        return self.table.index.tolist()

    @property
    def groups(self) -> pd.Series:
        return self.table[self.design_factor]

    @property
    def levels(self) -> List[str]:
        """Group levels in order of first appearance."""
        return list(pd.unique(self.groups))

    @property
    def covariates(self) -> List[str]:
        return [c for c in self.table.columns if c != self.design_factor]

    def samples_in(self, level: str) -> List[str]:
        if level not in self.levels:
            raise ValueError(
                f"Unknown {self.design_factor} level '{level}'. "
                f"Available: {', '.join(self.levels)}"
            )
        return self.groups.index[self.groups == level].tolist()

    def sample_conditions(self) -> Dict[str, str]:
        return {s: str(c) for s, c in self.groups.items()}

    def align_to(self, samples: Sequence[str]) -> "SampleDesign":
        """Reorder rows to `samples`; the sample sets must match exactly."""
        order = require_same_keys(samples, self.samples, "Design and bundle samples")
        return SampleDesign(self.table.loc[order].copy(), self.design_factor)

    def with_covariates(self, covariates: pd.DataFrame) -> "SampleDesign":
        """Append covariate columns by sample id (row count must be preserved)."""
        require_same_keys(self.samples, covariates.index, "Design and covariate samples")
        table = join_by_key(self.table, covariates, how="left", what="design and covariates")
        return SampleDesign(table, self.design_factor)


def load_sample_table(
    path: Union[str, Path],
    sample_column: str = "sample",
    design_factor: str = "condition",
) -> SampleDesign:
    """
    Read a CSV/TSV sample sheet.

    Args:
        path: Sample sheet with at least the sample and design factor columns
        sample_column: Column holding sample ids (file-name stems)
        design_factor: Column holding the experimental group

    Returns:
        SampleDesign indexed by sample id
    """
    df = pd.read_csv(path, sep=None, engine="python", dtype=str)
    missing = [c for c in (sample_column, design_factor) if c not in df.columns]
    if missing:
        raise ValueError(
            f"{path}: missing columns {missing}. Found: {', '.join(df.columns)}"
        )
    table = df.set_index(sample_column)[[design_factor]]
    table.index.name = "sample"
    return SampleDesign(table, design_factor)

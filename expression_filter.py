"""
Low-expression filtering and length guards for the abundance bundle.
"""

import logging
import pandas as pd

from abundance_loader import AbundanceBundle
from sample_design import SampleDesign

logger = logging.getLogger(__name__)


def group_medians(counts: pd.DataFrame, design: SampleDesign) -> pd.DataFrame:
    """
    Per-gene median raw count within each group.

    Args:
        counts: genes x samples raw counts
        design: SampleDesign covering exactly the count columns

    Returns:
        genes x groups DataFrame of medians (groups in design order)
    """
    design = design.align_to(counts.columns)
    medians = {
        level: counts[design.samples_in(level)].median(axis=1)
        for level in design.levels
    }
    return pd.DataFrame(medians, index=counts.index)


def filter_low_expression(
    bundle: AbundanceBundle, design: SampleDesign, min_median: float = 3
) -> AbundanceBundle:
    """
    Keep genes whose median count exceeds `min_median` in at least one group.

    Genes induced in only one condition are kept. Row order follows the
    original counts matrix and the same genes are kept in all three matrices.
    """
    medians = group_medians(bundle.counts, design)
    keep = (medians > min_median).any(axis=1)
    retained = bundle.counts.index[keep]
    logger.info(
        f"Expression filter (median > {min_median} in any group): "
        f"kept {len(retained)} of {len(keep)} genes"
    )
    return bundle.subset_genes(retained)


def clamp_zero_lengths(bundle: AbundanceBundle) -> AbundanceBundle:
    """Replace zero gene lengths with 1; other lengths are unchanged."""
    lengths = bundle.lengths.mask(bundle.lengths == 0, 1)
    n_zero = int((bundle.lengths == 0).to_numpy().sum())
    if n_zero:
        logger.info(f"Clamped {n_zero} zero lengths to 1")
    return bundle.with_lengths(lengths)


def drop_missing_covariate(
    bundle: AbundanceBundle, annotation: pd.DataFrame, column: str = "gc_content"
) -> AbundanceBundle:
    """Drop genes with no value for `column` in the (bundle-aligned) annotation."""
    values = annotation[column].reindex(bundle.counts.index)
    has_value = values.notna()
    n_missing = int((~has_value).sum())
    if n_missing:
        logger.warning(f"Dropping {n_missing} genes without '{column}' annotation")
    return bundle.subset_genes(bundle.counts.index[has_value])

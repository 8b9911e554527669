"""
Size factors and unwanted-variation factors from replicate samples.

Size factors use the DESeq2 median-of-ratios estimator. Unwanted variation is
estimated from within-group residuals: samples of the same experimental group
should only differ by noise and nuisance effects, so the leading singular
vectors of their centred log counts give per-sample factors (W1..Wk) that are
then used as regressors in the differential expression model.

The factors are fitted on control genes. With empirical controls (genes that
a first-pass fit without W does not call significant) the group difference of
the differential genes cannot leak into W.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple
import logging
import pandas as pd
import numpy as np
from pydeseq2.preprocessing import deseq2_norm

from sample_design import SampleDesign

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UnwantedVariationResult:
    """Output of the unwanted-variation stage."""

    size_factors: pd.Series  # per sample
    normalized_counts: pd.DataFrame  # genes x samples, counts / size factor
    factors: pd.DataFrame  # samples x k (W1..Wk)
    corrected_counts: pd.DataFrame  # genes x samples, normalized counts with W removed
    design: SampleDesign  # input design extended with W1..Wk
    control_genes: List[str]  # genes the factors were fitted on


def median_of_ratios(counts: pd.DataFrame) -> Tuple[pd.Series, pd.DataFrame]:
    """
    DESeq2 size factors and normalized counts.

    Args:
        counts: genes x samples counts

    Returns:
        (size_factors indexed by sample, normalized genes x samples counts)
    """
    normed, size_factors = deseq2_norm(counts.T.to_numpy(dtype=float))
    size_factors = pd.Series(np.asarray(size_factors), index=counts.columns, name="size_factor")
    normalized = pd.DataFrame(np.asarray(normed).T, index=counts.index, columns=counts.columns)
    return size_factors, normalized


def replicate_groups(design: SampleDesign) -> List[List[int]]:
    """Row positions of replicate samples per group (groups of one are skipped)."""
    groups = []
    for level in design.levels:
        members = [design.samples.index(s) for s in design.samples_in(level)]
        if len(members) >= 2:
            groups.append(members)
    return groups


def empirical_control_genes(
    first_pass: pd.DataFrame, padj_threshold: float = 0.05
) -> List[str]:
    """
    Genes a first-pass differential expression fit does not call significant.

    Args:
        first_pass: Results table indexed by gene with a `padj` column
        padj_threshold: Genes with padj below this are excluded

    Returns:
        Gene ids in table order; genes with missing padj are kept
    """
    significant = first_pass["padj"] < padj_threshold  # NaN compares False
    controls = first_pass.index[~significant].tolist()
    logger.info(
        f"Empirical controls: {len(controls)} of {len(first_pass)} genes "
        f"(first-pass padj >= {padj_threshold})"
    )
    return controls


def _orient_singular_vectors(vt: np.ndarray) -> np.ndarray:
    """Flip each row so its largest-magnitude entry is positive."""
    idx = np.abs(vt).argmax(axis=1)
    signs = np.sign(vt[np.arange(vt.shape[0]), idx])
    signs[signs == 0] = 1.0
    return vt * signs[:, None]


def estimate_unwanted_factors(
    normalized: pd.DataFrame,
    design: SampleDesign,
    k: int = 1,
    control_genes: Optional[Sequence[str]] = None,
    epsilon: float = 1.0,
    tolerance: float = 1e-8,
) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Estimate k unwanted-variation factors from replicate differences.

    Singular vectors are sign-normalized, so the factors do not depend on the
    order of the samples.

    Args:
        normalized: genes x samples normalized counts
        design: SampleDesign; replicate groups are its design factor levels
        k: Number of factors (default: 1)
        control_genes: Genes used to estimate the factors (default: all)
        epsilon: Offset added before the log transform
        tolerance: Singular values below this are treated as zero

    Returns:
        (factors samples x k with columns W1..Wk,
         corrected genes x samples counts, rounded and non-negative)
    """
    if k < 1:
        raise ValueError(f"k must be >= 1, got {k}")
    design = design.align_to(normalized.columns)

    groups = replicate_groups(design)
    if not groups:
        raise ValueError("Unwanted variation needs at least one group with 2+ replicates")

    Y = np.log(normalized.T.to_numpy(dtype=float) + epsilon)  # samples x genes
    Y_centred = Y - Y.mean(axis=0)

    if control_genes is None:
        controls = np.ones(Y.shape[1], dtype=bool)
    else:
        controls = normalized.index.isin(list(control_genes))
        if not controls.any():
            raise ValueError("None of the control genes are in the count matrix")

    residuals = np.vstack([Y[members] - Y[members].mean(axis=0) for members in groups])
    residuals = residuals[np.abs(residuals).sum(axis=1) > 0]

    _, d, vt = np.linalg.svd(residuals, full_matrices=False)
    vt = _orient_singular_vectors(vt)
    rank = int((d > tolerance).sum())
    if rank == 0:
        raise ValueError("Replicate residuals are all zero; no unwanted variation to estimate")
    if rank < k:
        logger.warning(f"Replicate residuals have rank {rank}; using k={rank} instead of {k}")
        k = rank
    if controls.sum() < k:
        raise ValueError(f"Need at least {k} control genes, got {int(controls.sum())}")

    alpha = np.diag(d[:k]) @ vt[:k]  # k x genes
    alpha_c = alpha[:, controls]
    W = np.linalg.solve(alpha_c @ alpha_c.T, alpha_c @ Y_centred[:, controls].T).T  # samples x k

    corrected = np.exp(Y - W @ alpha) - epsilon

    factors = pd.DataFrame(
        W, index=normalized.columns, columns=[f"W{i + 1}" for i in range(k)]
    )
    corrected_counts = pd.DataFrame(
        corrected.T, index=normalized.index, columns=normalized.columns
    ).clip(lower=0).round()
    return factors, corrected_counts


def remove_unwanted_variation(
    counts: pd.DataFrame,
    design: SampleDesign,
    k: int = 1,
    control_genes: Optional[Sequence[str]] = None,
) -> UnwantedVariationResult:
    """
    Size-factor normalize `counts`, estimate W1..Wk and extend the design.

    The returned design has the same sample order as `counts` and is the
    fixed design input to the differential expression model.
    """
    design = design.align_to(counts.columns)
    size_factors, normalized = median_of_ratios(counts)
    logger.info(
        "Size factors: "
        + ", ".join(f"{s}={v:.3f}" for s, v in size_factors.items())
    )

    factors, corrected = estimate_unwanted_factors(
        normalized, design, k=k, control_genes=control_genes
    )
    logger.info(f"Estimated {factors.shape[1]} unwanted-variation factor(s)")

    if control_genes is None:
        used = counts.index.tolist()
    else:
        wanted = set(control_genes)
        used = [g for g in counts.index if g in wanted]

    return UnwantedVariationResult(
        size_factors=size_factors,
        normalized_counts=normalized,
        factors=factors,
        corrected_counts=corrected,
        design=design.with_covariates(factors),
        control_genes=used,
    )

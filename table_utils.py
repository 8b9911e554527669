"""
Key-based table helpers shared by the pipeline stages.

Every cross-table join in the pipeline goes through `join_by_key` so that a
mismatch between identifiers surfaces as an error instead of a silently
misaligned row.
"""

from typing import Iterable, List
import pandas as pd


def strip_version(identifier: str) -> str:
    """
    Drop an Ensembl-style version suffix.

    Examples:
        >>> strip_version("ENSMUSG00000000001.4")
        'ENSMUSG00000000001'
        >>> strip_version("Mbp")
        'Mbp'
    """
    identifier = str(identifier)
    head, sep, tail = identifier.rpartition(".")
    if sep and head and tail.isdigit():
        return head
    return identifier


def join_by_key(
    left: pd.DataFrame,
    right: pd.DataFrame,
    how: str = "left",
    what: str = "tables",
) -> pd.DataFrame:
    """
    Join two tables on their index and check the row count is preserved.

    Args:
        left: Table whose rows (and row order) define the result
        right: Table joined onto `left` by index; its index must be unique
        how: "left" (default) or "inner"
        what: Label used in error messages

    Returns:
        Joined DataFrame with the same index order as `left`

    Raises:
        ValueError: If `right` has duplicate keys, the columns overlap, or the
            join changed the number of rows
    """
    if not right.index.is_unique:
        dupes = right.index[right.index.duplicated()].unique().tolist()
        raise ValueError(
            f"Cannot join {what}: {len(dupes)} duplicated keys on the right side "
            f"(first: {dupes[:3]})."
        )

    overlap = left.columns.intersection(right.columns)
    if len(overlap) > 0:
        raise ValueError(
            f"Cannot join {what}: overlapping columns {overlap.tolist()}."
        )

    joined = left.join(right, how=how)

    if how == "left" and len(joined) != len(left):
        raise ValueError(
            f"Join of {what} changed row count: {len(left)} -> {len(joined)}."
        )
    return joined


def require_same_keys(expected: Iterable[str], observed: Iterable[str], what: str) -> List[str]:
    """
    Check that two identifier collections hold exactly the same keys.

    Returns the keys in `expected` order.

    Raises:
        ValueError: listing the keys missing on either side
    """
    expected = [str(e) for e in expected]
    observed_set = set(str(o) for o in observed)
    expected_set = set(expected)

    missing = [e for e in expected if e not in observed_set]
    extra = sorted(observed_set - expected_set)
    if missing or extra:
        raise ValueError(
            f"{what} do not match. "
            f"Missing: {missing[:5]}{'...' if len(missing) > 5 else ''}. "
            f"Unexpected: {extra[:5]}{'...' if len(extra) > 5 else ''}."
        )
    return expected

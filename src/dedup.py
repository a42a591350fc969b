"""Dedup filter module for incremental stat delivery.

Pure calculation functions with no I/O or side effects.
"""

from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from stats import StatRow


def filter_new_rows(
    snapshot: Sequence[StatRow], watermark: datetime
) -> Tuple[List[StatRow], Optional[datetime]]:
    """Select the newest interval's rows that have not been delivered yet.

    The views keep a top-N window per interval, and an interval is written
    atomically, so rows are "new" purely by recency: only the rows sharing the
    newest interval_end are considered, and only if that interval_end is
    strictly after the watermark.

    Args:
        snapshot: Rows for one kind, sorted by interval_end descending
        watermark: Latest interval_end already delivered for the kind

    Returns:
        Tuple of (new_rows, candidate_watermark). candidate_watermark is the
        batch's interval_end when new_rows is non-empty, otherwise None.

    Example:
        Rows at [T, T, T, T-1, T-1] with watermark T-1 yield the three rows
        at T and a candidate watermark of T.
    """
    if not snapshot:
        return ([], None)

    batch_end = snapshot[0].interval_end

    new_rows: List[StatRow] = []
    for row in snapshot:
        if row.interval_end != batch_end or not row.interval_end > watermark:
            break
        new_rows.append(row)

    if not new_rows:
        return ([], None)

    return (new_rows, batch_end)

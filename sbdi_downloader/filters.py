"""
Quality-assertion checks for downloaded occurrence records.

Downloads requested with ``qa`` carry one boolean column per quality
assertion, True where the assertion flagged the record. Some assertions
are marked fatal by the service: the record should not be used as is.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import pandas as pd

from sbdi_downloader.fields import FieldInfo
from sbdi_downloader.table import OccurrenceTable
from sbdi_downloader.utils import clean_string_list


@dataclass
class AssertionFilterConfig:
    """
    Which flagged records to drop.

    Attributes:
        exclude_fatal: Drop records flagged by any fatal assertion
        exclude: Assertion names whose flagged records are dropped
    """

    exclude_fatal: bool = True
    exclude: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.exclude = clean_string_list(self.exclude)


def _flags(values: pd.Series) -> pd.Series:
    """Boolean mask of flagged records in an assertion column."""
    if pd.api.types.is_bool_dtype(values):
        return values.fillna(False).astype(bool)
    return values.astype(str).str.strip().str.lower().eq("true")


def assertion_columns(
    table: OccurrenceTable, assertions: list[FieldInfo]
) -> list[FieldInfo]:
    """Get the assertions that have a column in the table."""
    columns = set(table.columns)
    return [a for a in assertions if a.name in columns]


def check_assertions(table: OccurrenceTable, assertions: list[FieldInfo]) -> pd.DataFrame:
    """
    Summarize the quality assertions present in a table.

    Args:
        table: Downloaded occurrences
        assertions: Assertion dictionary from the server

    Returns:
        DataFrame with columns name, description, fatal and count (number of
        flagged records), most frequent first. Assertions without a column
        in the table are left out.
    """
    rows = []
    for assertion in assertion_columns(table, assertions):
        rows.append(
            {
                "name": assertion.name,
                "description": assertion.description,
                "fatal": assertion.fatal,
                "count": int(_flags(table.data[assertion.name]).sum()),
            }
        )

    summary = pd.DataFrame(rows, columns=["name", "description", "fatal", "count"])
    return summary.sort_values(["count", "name"], ascending=[False, True]).reset_index(
        drop=True
    )


def filter_records(
    table: OccurrenceTable,
    config: AssertionFilterConfig,
    assertions: list[FieldInfo],
) -> tuple[OccurrenceTable, dict[str, int]]:
    """
    Drop records flagged by unwanted assertions and return statistics.

    A dropped record is counted once, under the first assertion (in
    dictionary order) that excluded it.

    Args:
        table: Downloaded occurrences
        config: AssertionFilterConfig instance
        assertions: Assertion dictionary from the server

    Returns:
        Tuple of (filtered table, statistics dict)
    """
    stats = {"total": len(table), "kept": 0}
    keep = pd.Series(True, index=table.data.index)

    for assertion in assertion_columns(table, assertions):
        if not (
            (config.exclude_fatal and assertion.fatal) or assertion.name in config.exclude
        ):
            continue

        dropped = keep & _flags(table.data[assertion.name])
        if dropped.any():
            stats[assertion.name] = int(dropped.sum())
            keep &= ~dropped

    stats["kept"] = int(keep.sum())
    return table.subset(keep), stats


def format_filter_stats(stats: dict[str, int]) -> str:
    """
    Format filter statistics as a human-readable string.

    Args:
        stats: Statistics dictionary from filter_records

    Returns:
        Formatted string
    """
    lines = [
        f"Total records processed: {stats['total']:,}",
        f"Records kept: {stats['kept']:,}",
    ]

    reasons = {k: v for k, v in stats.items() if k not in ("total", "kept")}
    if reasons:
        lines.append("")
        lines.append("Exclusion reasons:")
        for name, count in sorted(reasons.items(), key=lambda kv: (-kv[1], kv[0])):
            lines.append(f"  - {name}: {count:,}")

    return "\n".join(lines)

# SPDX-License-Identifier: Apache-2.0
"""
Missing-data inspection: per-column glimpse, missingness patterns,
missing-vs-observed comparisons and pairwise summaries.

Every function validates all requested columns before computing anything and
returns plain DataFrames (or small models wrapping them). Plotting is left to
the caller.
"""
from __future__ import annotations

import logging
import warnings
from collections import Counter
from enum import Enum
from typing import Callable, Iterable

import numpy as np
import pandas as pd
from pydantic import BaseModel, ConfigDict
from scipy import stats as scipy_stats

from healthtab.exceptions import DegenerateComparison
from healthtab.table import (
    ColumnKind,
    as_numbers,
    column_kinds,
    column_specs,
    missing_indicator,
    observed_levels,
    require_columns,
)

logger = logging.getLogger("healthtab")

NOT_MISSING = "Not missing"
MISSING = "Missing"
GROUPS = (NOT_MISSING, MISSING)

COMPARE_COLUMNS = [
    "column",
    "label",
    "level",
    NOT_MISSING,
    MISSING,
    "test",
    "statistic",
    "p",
    "n_excluded",
    "degenerate",
]
FIVE_NUMBER = ["n", "min", "q1", "median", "q3", "max"]


class FillMode(str, Enum):
    COUNT = "count"
    PROPORTION = "proportion"


class _Frames(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)


# -----------------------------------------------------------------------------
# Glimpse
# -----------------------------------------------------------------------------

class Glimpse(_Frames):
    numeric: pd.DataFrame
    categorical: pd.DataFrame


def _base_row(series: pd.Series, name: str, kind: ColumnKind, label: str | None) -> dict:
    n_total = len(series)
    missing_n = int(series.isna().sum())
    return {
        "column": name,
        "label": label or name,
        "kind": kind.value,
        "n": n_total - missing_n,
        "missing_n": missing_n,
        "missing_percent": round(100.0 * missing_n / n_total, 1) if n_total else 0.0,
    }


def _numeric_row(series: pd.Series, row: dict, kind: ColumnKind) -> dict:
    observed = series.dropna()
    if kind is ColumnKind.DATE:
        values = pd.to_datetime(observed, errors="coerce").dropna()
        mean = sd = np.nan
    else:
        values = pd.to_numeric(observed, errors="coerce").astype(float).dropna()
        mean = float(values.mean()) if len(values) else np.nan
        sd = float(values.std()) if len(values) > 1 else np.nan
    if len(values):
        q25, median, q75 = values.quantile([0.25, 0.5, 0.75]).tolist()
        lo, hi = values.min(), values.max()
    else:
        q25 = median = q75 = lo = hi = np.nan
    row.update(
        mean=mean,
        sd=sd,
        min=lo,
        quartile_25=q25,
        median=median,
        quartile_75=q75,
        max=hi,
    )
    return row


def _categorical_row(series: pd.Series, row: dict, kind: ColumnKind) -> dict:
    observed = series.dropna()
    if kind is ColumnKind.TEXT:
        row.update(levels_n=int(observed.nunique()), levels=[], levels_count=[], levels_percent=[])
        return row
    levels = observed_levels(series)
    counts = observed.value_counts()
    n_obs = len(observed)
    level_counts = [int(counts.get(lvl, 0)) for lvl in levels]
    row.update(
        levels_n=len(levels),
        levels=[str(lvl) for lvl in levels],
        levels_count=level_counts,
        levels_percent=[round(100.0 * c / n_obs, 1) for c in level_counts] if n_obs else [],
    )
    return row


def glimpse(
    table: pd.DataFrame,
    columns: Iterable[str] | None = None,
    labels: dict[str, str] | None = None,
    max_levels: int | None = None,
) -> Glimpse:
    """
    Per-column overview: inferred kind, missing count and percent, and either
    distribution statistics (numeric and date columns) or observed levels
    (categorical and text columns). Read-only.
    """
    cols = require_columns(table, table.columns if columns is None else columns)
    labels = labels or {}
    kinds = column_kinds(table, cols, max_levels)
    numeric_rows, categorical_rows = [], []
    for col in cols:
        kind = kinds[col]
        row = _base_row(table[col], col, kind, labels.get(col))
        if kind in (ColumnKind.NUMERIC, ColumnKind.DATE):
            numeric_rows.append(_numeric_row(table[col], row, kind))
        elif kind in (ColumnKind.CATEGORICAL, ColumnKind.TEXT):
            categorical_rows.append(_categorical_row(table[col], row, kind))
        else:
            raise ValueError(f"Unhandled column kind: {kind}")
    numeric = pd.DataFrame(numeric_rows)
    categorical = pd.DataFrame(categorical_rows)
    return Glimpse(
        numeric=numeric.set_index("column") if numeric_rows else numeric,
        categorical=categorical.set_index("column") if categorical_rows else categorical,
    )


# -----------------------------------------------------------------------------
# Missingness patterns
# -----------------------------------------------------------------------------

class MissingPattern(_Frames):
    columns: list[str]
    table: pd.DataFrame
    counts: dict[tuple[int, ...], int]
    column_missing: dict[str, int]
    n_patterns: int
    n_rows: int


def _pattern_sort_key(item: tuple[tuple[int, ...], int]):
    flags, count = item
    return (sum(flags), -count, flags)


def missing_pattern(table: pd.DataFrame, dependent: str, explanatory: Iterable[str]) -> MissingPattern:
    """
    Groups rows by which of the analysed columns are missing.

    One pass builds a 0/1 flag vector per row, a second counts identical
    vectors. Patterns are ordered by number of missing columns, then by
    descending frequency, then by the flag vector itself.
    """
    specs = column_specs(dependent, explanatory)
    cols = require_columns(table, [s.name for s in specs])
    flags = table[cols].isna()
    counts = Counter(tuple(int(f) for f in row) for row in flags.to_numpy(dtype=bool).tolist())
    ordered = sorted(counts.items(), key=_pattern_sort_key)
    records = [
        {**dict(zip(cols, pattern)), "n_missing": sum(pattern), "count": count}
        for pattern, count in ordered
    ]
    frame = pd.DataFrame(records, columns=[*cols, "n_missing", "count"])
    return MissingPattern(
        columns=cols,
        table=frame.astype(int),
        counts=dict(ordered),
        column_missing={c: int(n) for c, n in flags.sum().items()},
        n_patterns=len(ordered),
        n_rows=len(table),
    )


# -----------------------------------------------------------------------------
# Missing vs observed comparison
# -----------------------------------------------------------------------------

def _mann_whitney(observed: np.ndarray, missing: np.ndarray) -> tuple[float, float, str]:
    res = scipy_stats.mannwhitneyu(observed, missing, alternative="two-sided")
    return float(res.statistic), float(res.pvalue), "mann_whitney"


def _kruskal(observed: np.ndarray, missing: np.ndarray) -> tuple[float, float, str]:
    res = scipy_stats.kruskal(observed, missing)
    return float(res.statistic), float(res.pvalue), "kruskal"


def _chi_squared(contingency: np.ndarray) -> tuple[float, float, str]:
    # Yates correction applies automatically to 2x2 tables
    chi2, p, _, _ = scipy_stats.chi2_contingency(contingency)
    return float(chi2), float(p), "chi2"


def _fisher(contingency: np.ndarray) -> tuple[float, float, str]:
    if contingency.shape != (2, 2):
        return _chi_squared(contingency)
    res = scipy_stats.fisher_exact(contingency)
    return float(res.statistic), float(res.pvalue), "fisher"


NUMERIC_TESTS: dict[str, Callable[[np.ndarray, np.ndarray], tuple[float, float, str]]] = {
    "mann_whitney": _mann_whitney,
    "kruskal": _kruskal,
}

CATEGORICAL_TESTS: dict[str, Callable[[np.ndarray], tuple[float, float, str]]] = {
    "chi2": _chi_squared,
    "fisher": _fisher,
}


def _flag_degenerate(column: str, reason: str) -> None:
    logger.warning("Degenerate comparison for '%s': %s", column, reason)
    warnings.warn(f"Column '{column}': {reason}", DegenerateComparison, stacklevel=4)


def _fmt_mean_sd(values: pd.Series, digits: int) -> str:
    if not len(values):
        return "-"
    sd = values.std() if len(values) > 1 else np.nan
    sd_txt = "-" if np.isnan(sd) else f"{sd:.{digits}f}"
    return f"{values.mean():.{digits}f} ({sd_txt})"


def _fmt_median_date(values: pd.Series) -> str:
    if not len(values):
        return "-"
    return str(pd.to_datetime(values).median())


def _compare_numeric(
    col: str,
    label: str,
    values: pd.Series,
    target_missing: pd.Series,
    kind: ColumnKind,
    test_name: str,
    n_excluded: int,
    digits: int,
) -> dict:
    numbers = as_numbers(values, kind)
    observed = numbers[~target_missing]
    missing = numbers[target_missing]
    if kind is ColumnKind.DATE:
        summary = (_fmt_median_date(values[~target_missing]), _fmt_median_date(values[target_missing]))
    else:
        summary = (_fmt_mean_sd(observed, digits), _fmt_mean_sd(missing, digits))
    statistic = p = np.nan
    method = test_name
    degenerate = True
    if not len(observed) or not len(missing):
        _flag_degenerate(col, "a comparison group has no observations")
    elif numbers.nunique() <= 1:
        _flag_degenerate(col, "zero variance across compared observations")
    else:
        statistic, p, method = NUMERIC_TESTS[test_name](observed.to_numpy(), missing.to_numpy())
        degenerate = False
    return {
        "column": col,
        "label": label,
        "level": "",
        NOT_MISSING: summary[0],
        MISSING: summary[1],
        "test": method,
        "statistic": statistic,
        "p": p,
        "n_excluded": n_excluded,
        "degenerate": degenerate,
    }


def _fmt_count(count: int, total: int) -> str:
    if not total:
        return f"{count} (-)"
    return f"{count} ({100.0 * count / total:.1f})"


def _compare_categorical(
    col: str,
    label: str,
    values: pd.Series,
    target_missing: pd.Series,
    test_name: str,
    n_excluded: int,
) -> list[dict]:
    levels = observed_levels(values)
    obs_counts = values[~target_missing].value_counts()
    miss_counts = values[target_missing].value_counts()
    contingency = np.array(
        [[int(obs_counts.get(lvl, 0)), int(miss_counts.get(lvl, 0))] for lvl in levels],
        dtype=int,
    ).reshape(len(levels), 2)
    statistic = p = np.nan
    method = test_name
    degenerate = True
    trimmed = contingency[contingency.sum(axis=1) > 0]
    trimmed = trimmed[:, trimmed.sum(axis=0) > 0]
    if len(levels) < 2:
        _flag_degenerate(col, "fewer than two observed levels")
    elif trimmed.shape[1] < 2:
        _flag_degenerate(col, "a comparison group has no observations")
    else:
        statistic, p, method = CATEGORICAL_TESTS[test_name](trimmed)
        degenerate = False
    totals = contingency.sum(axis=0) if len(levels) else np.zeros(2, dtype=int)
    rows = []
    for i, lvl in enumerate(levels):
        first = i == 0
        rows.append({
            "column": col,
            "label": label if first else "",
            "level": str(lvl),
            NOT_MISSING: _fmt_count(int(contingency[i, 0]), int(totals[0])),
            MISSING: _fmt_count(int(contingency[i, 1]), int(totals[1])),
            "test": method if first else "",
            "statistic": statistic if first else np.nan,
            "p": p if first else np.nan,
            "n_excluded": n_excluded,
            "degenerate": degenerate,
        })
    if not rows:
        rows.append({
            "column": col,
            "label": label,
            "level": "",
            NOT_MISSING: "-",
            MISSING: "-",
            "test": method,
            "statistic": statistic,
            "p": p,
            "n_excluded": n_excluded,
            "degenerate": degenerate,
        })
    return rows


def missing_compare(
    table: pd.DataFrame,
    target: str,
    explanatory: Iterable[str],
    *,
    numeric_test: str = "mann_whitney",
    categorical_test: str = "chi2",
    labels: dict[str, str] | None = None,
    digits: int = 1,
    max_levels: int | None = None,
) -> pd.DataFrame:
    """
    Compares each explanatory column between rows where `target` is observed
    and rows where it is missing.

    Numeric and date columns use a rank test, categorical and text columns a
    contingency test; both are looked up by name in NUMERIC_TESTS and
    CATEGORICAL_TESTS. Rows missing the explanatory value are excluded from
    that column's comparison only (counted in n_excluded). Degenerate
    comparisons report NaN statistics and degenerate=True instead of raising.
    A numeric comparison is degenerate when a group is empty or both groups
    together hold a single distinct value; zero variance inside one group
    alone is still tested.
    """
    explanatory = list(dict.fromkeys(explanatory))
    if target in explanatory:
        raise ValueError(f"Target column '{target}' cannot also be explanatory.")
    require_columns(table, [target, *explanatory])
    if numeric_test not in NUMERIC_TESTS:
        raise ValueError(f"Unknown numeric test: {numeric_test}. Allowed: {list(NUMERIC_TESTS)}")
    if categorical_test not in CATEGORICAL_TESTS:
        raise ValueError(
            f"Unknown categorical test: {categorical_test}. Allowed: {list(CATEGORICAL_TESTS)}"
        )
    labels = labels or {}
    target_missing = missing_indicator(table, target)
    kinds = column_kinds(table, explanatory, max_levels)
    rows: list[dict] = []
    for col in explanatory:
        present = table[col].notna()
        n_excluded = int((~present).sum())
        values = table.loc[present, col]
        groups = target_missing[present]
        kind = kinds[col]
        label = labels.get(col, col)
        if kind in (ColumnKind.NUMERIC, ColumnKind.DATE):
            rows.append(_compare_numeric(
                col, label, values, groups, kind, numeric_test, n_excluded, digits
            ))
        elif kind in (ColumnKind.CATEGORICAL, ColumnKind.TEXT):
            rows.extend(_compare_categorical(
                col, label, values, groups, categorical_test, n_excluded
            ))
        else:
            raise ValueError(f"Unhandled column kind: {kind}")
    return pd.DataFrame(rows, columns=COMPARE_COLUMNS)


# -----------------------------------------------------------------------------
# Pairwise summaries
# -----------------------------------------------------------------------------

class MissingPairs(_Frames):
    columns: list[str]
    fill_mode: FillMode
    kinds: dict[str, ColumnKind]
    summaries: dict[tuple[str, str], pd.DataFrame]

    def frame(self) -> pd.DataFrame:
        """All pair summaries stacked into one long table."""
        parts = []
        for (split_by, summarised), summary in self.summaries.items():
            if self.kinds[summarised] in (ColumnKind.NUMERIC, ColumnKind.DATE):
                part = summary.rename_axis("group").reset_index()
            else:
                part = (
                    summary.rename_axis("level")
                    .reset_index()
                    .melt(id_vars="level", var_name="group", value_name="value")
                )
                part["level"] = part["level"].astype(str)
            part.insert(0, "summarised", summarised)
            part.insert(0, "split_by", split_by)
            parts.append(part)
        if not parts:
            return pd.DataFrame(columns=["split_by", "summarised", "group"])
        return pd.concat(parts, ignore_index=True)


def _five_number(values: pd.Series, kind: ColumnKind) -> dict:
    if kind is ColumnKind.DATE:
        values = pd.to_datetime(values, errors="coerce").dropna()
    else:
        values = pd.to_numeric(values, errors="coerce").astype(float).dropna()
    if not len(values):
        return {"n": 0, "min": np.nan, "q1": np.nan, "median": np.nan, "q3": np.nan, "max": np.nan}
    q1, median, q3 = values.quantile([0.25, 0.5, 0.75]).tolist()
    return {"n": len(values), "min": values.min(), "q1": q1, "median": median, "q3": q3, "max": values.max()}


def _pair_summary(
    values: pd.Series,
    split_missing: pd.Series,
    kind: ColumnKind,
    fill_mode: FillMode,
) -> pd.DataFrame:
    present = values.notna()
    values = values[present]
    split_missing = split_missing[present]
    if kind in (ColumnKind.NUMERIC, ColumnKind.DATE):
        return pd.DataFrame(
            [_five_number(values[~split_missing], kind), _five_number(values[split_missing], kind)],
            index=list(GROUPS),
            columns=FIVE_NUMBER,
        )
    if kind in (ColumnKind.CATEGORICAL, ColumnKind.TEXT):
        levels = observed_levels(values)
        obs_counts = values[~split_missing].value_counts()
        miss_counts = values[split_missing].value_counts()
        counts = pd.DataFrame(
            {
                NOT_MISSING: [int(obs_counts.get(lvl, 0)) for lvl in levels],
                MISSING: [int(miss_counts.get(lvl, 0)) for lvl in levels],
            },
            index=pd.Index(levels, dtype=object),
        )
        if fill_mode is FillMode.PROPORTION:
            totals = counts.sum(axis=0).replace(0, np.nan)
            return counts / totals
        return counts
    raise ValueError(f"Unhandled column kind: {kind}")


def missing_pairs(
    table: pd.DataFrame,
    dependent: str,
    explanatory: Iterable[str],
    fill_mode: FillMode | str = FillMode.COUNT,
    max_levels: int | None = None,
) -> MissingPairs:
    """
    For every ordered pair of distinct columns, summarises the second column
    split by whether the first is missing. Numeric and date columns get
    five-number summaries per group; categorical and text columns get a
    level x group cross-tabulation (counts, or proportions per group).
    """
    fill_mode = FillMode(fill_mode)
    specs = column_specs(dependent, explanatory)
    cols = require_columns(table, [s.name for s in specs])
    kinds = column_kinds(table, cols, max_levels)
    summaries: dict[tuple[str, str], pd.DataFrame] = {}
    for split_by in cols:
        split_missing = missing_indicator(table, split_by)
        for summarised in cols:
            if summarised == split_by:
                continue
            summaries[(split_by, summarised)] = _pair_summary(
                table[summarised], split_missing, kinds[summarised], fill_mode
            )
    return MissingPairs(columns=cols, fill_mode=fill_mode, kinds=kinds, summaries=summaries)

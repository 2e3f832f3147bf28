# SPDX-License-Identifier: Apache-2.0
"""
Tabular helpers shared by the missingness inspector and the encryption utilities.

A table is a pandas DataFrame. A cell is missing when pandas.isna() says so
(None, NaN, NaT, pd.NA). Each column is classified into one ColumnKind and
every operation in the package branches on all four kinds.
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Iterable

import numpy as np
import pandas as pd
from pandas.api import types as ptypes
from pydantic import BaseModel

from healthtab.config import settings
from healthtab.exceptions import ColumnNotFound, IncompleteData

logger = logging.getLogger("healthtab")


class ColumnKind(str, Enum):
    NUMERIC = "numeric"
    CATEGORICAL = "categorical"
    DATE = "date"
    TEXT = "text"


class ColumnRole(str, Enum):
    DEPENDENT = "dependent"
    EXPLANATORY = "explanatory"


class MissingPolicy(str, Enum):
    """What to do with incomplete rows before handing a table to a model."""

    DROP_ROWS = "drop_rows"
    REQUIRE_COMPLETE = "require_complete"
    IMPUTE_EXTERNALLY = "impute_externally"


class ColumnSpec(BaseModel):
    name: str
    role: ColumnRole
    label: str | None = None

    @property
    def display(self) -> str:
        return self.label or self.name


def column_specs(
    dependent: str,
    explanatory: Iterable[str],
    labels: dict[str, str] | None = None,
) -> list[ColumnSpec]:
    """Tag the dependent and explanatory columns. A column may hold only one role."""
    labels = labels or {}
    explanatory = list(dict.fromkeys(explanatory))
    if dependent in explanatory:
        raise ValueError(f"Column '{dependent}' cannot be both dependent and explanatory.")
    specs = [ColumnSpec(name=dependent, role=ColumnRole.DEPENDENT, label=labels.get(dependent))]
    specs.extend(
        ColumnSpec(name=c, role=ColumnRole.EXPLANATORY, label=labels.get(c)) for c in explanatory
    )
    return specs


def require_columns(table: pd.DataFrame, columns: Iterable[str]) -> list[str]:
    """Raises ColumnNotFound naming every absent column. Returns the columns, deduplicated."""
    wanted = list(dict.fromkeys(columns))
    absent = [c for c in wanted if c not in table.columns]
    if absent:
        raise ColumnNotFound(absent, [str(c) for c in table.columns])
    return wanted


def _looks_like_dates(values: pd.Series) -> bool:
    inferred = ptypes.infer_dtype(values, skipna=True)
    return inferred in ("date", "datetime", "datetime64")


def infer_kind(series: pd.Series, max_levels: int | None = None) -> ColumnKind:
    """Classify a column. Strings with few distinct values count as categorical."""
    if max_levels is None:
        max_levels = settings.max_categorical_levels
    dtype = series.dtype
    if isinstance(dtype, pd.CategoricalDtype) or ptypes.is_bool_dtype(dtype):
        return ColumnKind.CATEGORICAL
    if ptypes.is_numeric_dtype(dtype):
        return ColumnKind.NUMERIC
    if ptypes.is_datetime64_any_dtype(dtype):
        return ColumnKind.DATE
    observed = series.dropna()
    if len(observed) and _looks_like_dates(observed):
        return ColumnKind.DATE
    if observed.nunique() <= max_levels:
        return ColumnKind.CATEGORICAL
    return ColumnKind.TEXT


def column_kinds(table: pd.DataFrame, columns: Iterable[str], max_levels: int | None = None) -> dict[str, ColumnKind]:
    return {c: infer_kind(table[c], max_levels) for c in columns}


def missing_indicator(table: pd.DataFrame, column: str) -> pd.Series:
    """Boolean Series, True where the cell is missing. Computed fresh on every call."""
    require_columns(table, [column])
    return table[column].isna().rename(f"{column}_missing")


def observed_levels(series: pd.Series) -> list:
    """Distinct non-missing values: category order for categoricals, else first appearance."""
    if isinstance(series.dtype, pd.CategoricalDtype):
        present = set(series.dropna().unique())
        return [lvl for lvl in series.cat.categories if lvl in present]
    return list(pd.unique(series.dropna()))


def as_numbers(series: pd.Series, kind: ColumnKind) -> pd.Series:
    """Numeric view of a NUMERIC or DATE column (dates as integer nanoseconds)."""
    if kind is ColumnKind.DATE:
        stamps = pd.to_datetime(series, errors="coerce")
        present = stamps.notna()
        out = pd.Series(np.nan, index=series.index, name=series.name)
        out[present] = stamps[present].astype("int64").astype(float)
        return out
    if kind is ColumnKind.NUMERIC:
        return pd.to_numeric(series, errors="coerce").astype(float)
    raise ValueError(f"Column of kind '{kind.value}' has no numeric view.")


def apply_missing_policy(
    table: pd.DataFrame,
    columns: Iterable[str],
    policy: MissingPolicy = MissingPolicy.REQUIRE_COMPLETE,
) -> pd.DataFrame:
    """
    Applies an explicit policy for incomplete rows in the given columns.

    DROP_ROWS returns complete rows only and logs how many were removed.
    REQUIRE_COMPLETE raises IncompleteData if any cell is missing.
    IMPUTE_EXTERNALLY returns the table unchanged for an external imputer.
    """
    cols = require_columns(table, columns)
    incomplete = table[cols].isna().any(axis=1)
    n_incomplete = int(incomplete.sum())
    policy = MissingPolicy(policy)
    if policy is MissingPolicy.DROP_ROWS:
        if n_incomplete:
            logger.info("Dropping %d of %d rows with missing values in %s", n_incomplete, len(table), cols)
        return table.loc[~incomplete]
    if policy is MissingPolicy.REQUIRE_COMPLETE:
        if n_incomplete:
            per_column = {c: int(n) for c, n in table[cols].isna().sum().items() if n}
            raise IncompleteData(
                f"{n_incomplete} row(s) have missing values; missing per column: {per_column}"
            )
        return table
    if n_incomplete:
        logger.info("%d incomplete rows left for external imputation", n_incomplete)
    return table

# SPDX-License-Identifier: Apache-2.0
"""Table helpers: kind inference, column checks, missing policy."""
import datetime

import pandas as pd
import pytest

from healthtab.exceptions import ColumnNotFound, IncompleteData
from healthtab.table import (
    ColumnKind,
    ColumnRole,
    MissingPolicy,
    apply_missing_policy,
    as_numbers,
    column_specs,
    infer_kind,
    missing_indicator,
    observed_levels,
    require_columns,
)


def test_infer_kind_numeric():
    assert infer_kind(pd.Series([1, 2, None])) is ColumnKind.NUMERIC
    assert infer_kind(pd.Series([1.5, 2.5])) is ColumnKind.NUMERIC


def test_infer_kind_categorical_dtype_and_bool():
    assert infer_kind(pd.Series(["a", "b"], dtype="category")) is ColumnKind.CATEGORICAL
    assert infer_kind(pd.Series([True, False])) is ColumnKind.CATEGORICAL


def test_infer_kind_strings_by_level_count():
    s = pd.Series(["x", "y", "z", None])
    assert infer_kind(s, max_levels=5) is ColumnKind.CATEGORICAL
    assert infer_kind(s, max_levels=2) is ColumnKind.TEXT


def test_infer_kind_dates():
    assert infer_kind(pd.Series(pd.to_datetime(["2020-01-01", None]))) is ColumnKind.DATE
    assert infer_kind(pd.Series([datetime.date(2020, 1, 1), datetime.date(2021, 1, 1)])) is ColumnKind.DATE


def test_require_columns_lists_every_absent_column(small_table):
    with pytest.raises(ColumnNotFound) as exc:
        require_columns(small_table, ["a", "nope", "also_nope"])
    assert exc.value.missing == ["nope", "also_nope"]
    assert "nope" in str(exc.value)
    assert isinstance(exc.value, KeyError)


def test_require_columns_deduplicates(small_table):
    assert require_columns(small_table, ["a", "c", "a"]) == ["a", "c"]


def test_missing_indicator_recomputed_on_each_call(small_table):
    first = missing_indicator(small_table, "a")
    assert first.tolist() == [False, True, False, True]
    small_table.loc[1, "a"] = 2.0
    assert missing_indicator(small_table, "a").tolist() == [False, False, False, True]


def test_column_specs_roles_and_labels():
    specs = column_specs("mort", ["age", "sex"], labels={"age": "Age (years)"})
    assert specs[0].role is ColumnRole.DEPENDENT
    assert [s.role for s in specs[1:]] == [ColumnRole.EXPLANATORY] * 2
    assert specs[1].display == "Age (years)"
    assert specs[2].display == "sex"


def test_column_specs_rejects_double_role():
    with pytest.raises(ValueError, match="both"):
        column_specs("age", ["age", "sex"])


def test_observed_levels_keeps_category_order():
    s = pd.Series(pd.Categorical(["b", "a", None], categories=["a", "b", "c"]))
    assert observed_levels(s) == ["a", "b"]
    assert observed_levels(pd.Series(["z", "y", "z"])) == ["z", "y"]


def test_as_numbers_dates_keep_missing():
    s = pd.Series(pd.to_datetime(["2020-01-01", None, "2020-01-02"]))
    out = as_numbers(s, ColumnKind.DATE)
    assert pd.isna(out.iloc[1])
    assert out.iloc[2] > out.iloc[0]


def test_missing_policy_drop_rows(small_table):
    out = apply_missing_policy(small_table, ["a", "c"], MissingPolicy.DROP_ROWS)
    assert out.index.tolist() == [0, 2]


def test_missing_policy_require_complete(small_table):
    with pytest.raises(IncompleteData, match="a"):
        apply_missing_policy(small_table, ["a"], MissingPolicy.REQUIRE_COMPLETE)
    assert apply_missing_policy(small_table, ["c"], "require_complete") is small_table


def test_missing_policy_impute_externally_keeps_rows(small_table):
    out = apply_missing_policy(small_table, ["a", "b"], MissingPolicy.IMPUTE_EXTERNALLY)
    assert len(out) == len(small_table)

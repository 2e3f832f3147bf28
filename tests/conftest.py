# SPDX-License-Identifier: Apache-2.0
"""pytest fixtures shared by the healthtab tests."""
import numpy as np
import pandas as pd
import pytest

from healthtab.keys import generate_key_pair

PASSPHRASE = "Str0ng-Passphrase!23"


@pytest.fixture(scope="session")
def passphrase():
    return PASSPHRASE


@pytest.fixture(scope="session")
def key_pair():
    """One 2048-bit key pair for the whole run; 4096-bit generation is slow."""
    return generate_key_pair(PASSPHRASE, key_size=2048)


@pytest.fixture(scope="session")
def other_key_pair():
    return generate_key_pair("An0ther-Passphrase!", key_size=2048)


@pytest.fixture
def survey():
    """
    100 patients, 50 female then 50 male.
    smoking is missing for the first 10 rows (all female, youngest ages);
    smoking_mcar is missing for 5 women and 5 men.
    """
    n = 100
    sex = ["Female"] * 50 + ["Male"] * 50
    smoking = ["Yes" if i % 3 == 0 else "No" for i in range(n)]
    smoking_mcar = list(smoking)
    for i in range(10):
        smoking[i] = None
    for i in list(range(20, 25)) + list(range(70, 75)):
        smoking_mcar[i] = None
    age = np.arange(20, 20 + n, dtype=float)
    age[[15, 60]] = np.nan
    return pd.DataFrame(
        {
            "id": np.arange(1, n + 1),
            "sex": sex,
            "age": age,
            "smoking": smoking,
            "smoking_mcar": smoking_mcar,
        }
    )


@pytest.fixture
def small_table():
    return pd.DataFrame(
        {
            "a": [1.0, None, 3.0, None],
            "b": [None, None, "x", "y"],
            "c": [1, 2, 3, 4],
        }
    )

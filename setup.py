# SPDX-License-Identifier: Apache-2.0
from setuptools import setup, find_packages

setup(
    name="healthtab",
    version="0.1.0",
    description="Missing-data inspection and field-level encryption for health data tables",
    python_requires=">=3.10",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "click>=8.0",
        "cryptography>=41.0",
        "numpy>=1.24",
        "pandas>=2.0",
        "pydantic>=2.0",
        "pydantic-settings>=2.0",
        "requests>=2.28",
        "scipy>=1.10",
    ],
    extras_require={"test": ["pytest>=7.0"]},
    entry_points={"console_scripts": ["healthtab=healthtab.cli:main"]},
)

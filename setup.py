# SPDX-License-Identifier: MPL-2.0
"""Setuptools configuration for backward compatibility.

Only needed for tools that don't support pyproject.toml yet; all metadata for
quantum-shield lives in pyproject.toml.
"""
from setuptools import setup

if __name__ == "__main__":
    setup()

# SPDX-License-Identifier: MPL-2.0
"""
Quantum Shield - Main entry point for the CLI.

This module provides the command-line interface for the Quantum Shield package.
"""

from quantum_shield.cli.main import cli

if __name__ == "__main__":
    cli()

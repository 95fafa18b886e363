# SPDX-License-Identifier: MPL-2.0
"""Service layer: ledger, metadata and shield orchestration."""

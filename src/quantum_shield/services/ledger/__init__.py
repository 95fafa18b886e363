# SPDX-License-Identifier: MPL-2.0
"""Consensus log adapters and proof anchoring."""

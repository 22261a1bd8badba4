"""Cadence CLI - offline analysis of task snapshots.

Usage:
    cadence graph cycles snapshot.json
    cadence graph critical-path snapshot.json
    cadence metrics snapshot.json --start 2024-01-01 --end 2024-02-01
    cadence workflow show
"""

from cadence.cli.main import app, main

__all__ = ["app", "main"]

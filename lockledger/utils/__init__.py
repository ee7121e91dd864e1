"""Utility helpers."""

from lockledger.utils.datetime import as_naive_utc
from lockledger.utils.duration import parse_duration

__all__ = ["as_naive_utc", "parse_duration"]

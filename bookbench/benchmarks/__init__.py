"""
Benchmarking harness for availability queries.

This package grows a synthetic resource/booking dataset step by step, builds the
production index set, measures the availability queries at every step and
renders delimited-text and readable reports plus summary charts.
"""

from .main import main

__all__ = ["main"]

"""
Benchmark harness for applications driven through their CLI interpreter.

This package runs a fixed catalogue of timed workload scenarios against the
target application, drives concurrent load runs that clean up after
themselves, and renders a summary with optional CSV, manifest and chart
artefacts.
"""

from .main import main

__all__ = ["main"]

"""Likelihood Statistics Module."""

from .metrics import LLStats, CorpusReport

__all__ = [
    "LLStats",
    "CorpusReport",
]

"""sheets-rewrite: resilient, bounded-concurrency text rewriting for spreadsheets."""

__version__ = "1.0.0"

"""Full-text search server: a canonical document store kept in step with a ranked search index."""

__version__ = "0.1.0"

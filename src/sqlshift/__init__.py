"""sqlshift - transactional migration application for relational databases."""

__version__ = "0.1.0"

"""Dual-backend storage for code intelligence: relational records plus semantic embeddings."""

__version__ = "0.1.0"

"""Convenience exports for ORM models.

Surface the relational record kinds and the migration ledger so calling code can import them from a single module.
"""

from .semantic_concept import SemanticConcept
from .developer_pattern import DeveloperPattern
from .file_intelligence import FileIntelligence
from .ai_insight import AIInsight, ValidationStatus
from .migration import Migration

__all__ = [
    "SemanticConcept",
    "DeveloperPattern",
    "FileIntelligence",
    "AIInsight",
    "ValidationStatus",
    "Migration",
]

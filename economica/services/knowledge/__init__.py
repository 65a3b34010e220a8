"""Curated knowledge base."""

from economica.services.knowledge.knowledge_base import KnowledgeBaseService

__all__ = ["KnowledgeBaseService"]

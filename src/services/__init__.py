"""Services that orchestrate source collection."""

from src.services.collection_service import CollectionOrchestrator

__all__ = ["CollectionOrchestrator"]

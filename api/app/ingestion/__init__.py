"""Client registry for upstream services."""

from __future__ import annotations

from app.ingestion.catalog import CatalogClient
from app.ingestion.llm import LLMClient

_CATALOG: CatalogClient | None = None
_LLM: LLMClient | None = None


def get_catalog_client() -> CatalogClient:
    """Return the process-wide catalog client."""
    global _CATALOG
    if _CATALOG is None:
        _CATALOG = CatalogClient()
    return _CATALOG


def get_llm_client() -> LLMClient:
    """Return the process-wide LLM client."""
    global _LLM
    if _LLM is None:
        _LLM = LLMClient()
    return _LLM

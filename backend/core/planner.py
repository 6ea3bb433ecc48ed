"""
Search query planning for a monitored entity.
"""

from __future__ import annotations

from typing import List

from adapter.models import MonitoredEntity

MAX_QUERIES = 3


def _clean_handle(handle: str) -> str:
    return handle.strip().lstrip("@").strip()


def _clean_symbol(symbol: str) -> str:
    return symbol.strip().lstrip("$").strip().upper()


def plan_queries(entity: MonitoredEntity) -> List[str]:
    """
    Ordered search queries for an entity, most precise first:

        from:<handle>   posts by the project's own account
        $<SYMBOL>       cashtag mentions
        <name>          plain name mentions

    Free-text search terms fill any remaining slot. Always yields at least
    the name query.
    """
    queries: List[str] = []

    if entity.handle and _clean_handle(entity.handle):
        queries.append(f"from:{_clean_handle(entity.handle)}")

    if entity.symbol and _clean_symbol(entity.symbol):
        queries.append(f"${_clean_symbol(entity.symbol)}")

    queries.append(entity.name.strip())

    terms = (entity.search_terms or "").strip()
    if terms and terms not in queries and len(queries) < MAX_QUERIES:
        queries.append(terms)

    return queries


__all__ = ["plan_queries", "MAX_QUERIES"]

"""
Substring Search Engine: scans a target index page by page and reports where the query occurs in
field keys and/or values. No tokenization and no ranking; hits come back in scan order.
"""

import re
from collections.abc import Iterator
from typing import Literal

from indexsync.config.logging import get_logger
from indexsync.domain.models import IndexedDocument, SearchHit, SearchMatch
from indexsync.repositories.base import SearchEngine
from indexsync.services.registry import IndexRegistry

logger = get_logger(__name__)

DEFAULT_PAGE_SIZE = 500


def _occurrences(pattern: re.Pattern, text: str, all_occurrences: bool) -> Iterator[tuple[int, int]]:
    """Non-overlapping [start, end) spans on the original text."""
    if not all_occurrences:
        found = pattern.search(text)
        if found:
            yield found.start(), found.end()
        return
    for found in pattern.finditer(text):
        yield found.start(), found.end()


def match_document(
    document: IndexedDocument,
    pattern: re.Pattern,
    *,
    search_in_keys: bool,
    search_in_values: bool,
    all_occurrences: bool,
) -> list[SearchMatch]:
    matches: list[SearchMatch] = []
    for key, value in document.fields.items():
        targets: list[tuple[Literal["key", "value"], str]] = []
        if search_in_keys:
            targets.append(("key", key))
        if search_in_values:
            targets.append(("value", value))
        for match_in, text in targets:
            for start, end in _occurrences(pattern, text, all_occurrences):
                matches.append(
                    SearchMatch(
                        document_id=document.id,
                        match_in=match_in,
                        field_key=key,
                        field_value=value,
                        start_index=start,
                        end_index=end,
                    )
                )
    return matches


class SubstringSearchEngine:
    def __init__(self, registry: IndexRegistry, engine: SearchEngine, *, page_size: int = DEFAULT_PAGE_SIZE):
        self._registry = registry
        self._engine = engine
        self._page_size = page_size

    async def search(
        self,
        name: str,
        query: str,
        *,
        search_in_keys: bool = False,
        search_in_values: bool = True,
        case_sensitive: bool = True,
        all_occurrences: bool = False,
        limit: int | None = None,
    ) -> list[SearchHit]:
        """Raises NotFoundError for unknown indices. An empty query matches nothing."""
        definition = self._registry.get(name)
        if not query or not (search_in_keys or search_in_values) or limit == 0:
            return []

        pattern = re.compile(re.escape(query), 0 if case_sensitive else re.IGNORECASE)
        hits: list[SearchHit] = []
        scanned = 0
        async for document in self._engine.scan(definition.target_index_name, self._page_size):
            scanned += 1
            matches = match_document(
                document,
                pattern,
                search_in_keys=search_in_keys,
                search_in_values=search_in_values,
                all_occurrences=all_occurrences,
            )
            if matches:
                hits.append(SearchHit(document_id=document.id, matches=matches))
                if limit is not None and len(hits) >= limit:
                    break
        logger.info(
            "Search finished",
            extra={"index_name": name, "scanned": scanned, "hits": len(hits), "case_sensitive": case_sensitive},
        )
        return hits

"""
Index Registry: named index definitions and the reverse lookup from a source binding to the
indices that monitor it. Definitions are persisted through a DefinitionStore and cached in-process.
"""

import asyncio
from collections.abc import Awaitable, Callable, Iterable

from indexsync.config.logging import get_logger
from indexsync.domain.errors import DuplicateNameError, NotFoundError
from indexsync.domain.models import IndexDefinition, SourceBinding
from indexsync.repositories.base import DefinitionStore
from indexsync.utils.time import utc_now

logger = get_logger(__name__)

DeleteListener = Callable[[str], Awaitable[None] | None]


def _normalize_sources(sources: Iterable[SourceBinding | tuple[str, str]]) -> tuple[SourceBinding, ...]:
    """Validate bindings and drop duplicates, keeping first-seen order."""
    seen: dict[SourceBinding, None] = {}
    for raw in sources:
        if isinstance(raw, SourceBinding):
            binding = SourceBinding.of(raw.database, raw.collection)
        else:
            database, collection = raw
            binding = SourceBinding.of(database, collection)
        seen.setdefault(binding, None)
    return tuple(seen)


def _require_text(value: str | None, field: str) -> str:
    if value is None or not value.strip():
        raise ValueError(f"{field} must not be blank")
    return value.strip()


class IndexRegistry:
    """
    Mutations (create/update/delete/detach) are serialized by a lock and write through to the store
    before the cache and the reverse lookup change. Reads never wait on the lock.
    """

    def __init__(self, store: DefinitionStore):
        self._store = store
        self._definitions: dict[str, IndexDefinition] = {}
        self._by_source: dict[SourceBinding, set[str]] = {}
        self._lock = asyncio.Lock()
        self._delete_listeners: list[DeleteListener] = []

    def add_delete_listener(self, listener: DeleteListener) -> None:
        """Called with the index name after a definition is deleted."""
        self._delete_listeners.append(listener)

    async def load(self) -> int:
        """Populate the cache and the reverse lookup from the store. Returns number of definitions."""
        definitions = await self._store.list_all()
        async with self._lock:
            self._definitions = {}
            self._by_source = {}
            for definition in definitions:
                self._definitions[definition.name] = definition
                self._link(definition)
        logger.info("Index registry loaded", extra={"definitions": len(definitions)})
        return len(definitions)

    def _link(self, definition: IndexDefinition) -> None:
        for binding in definition.sources:
            self._by_source.setdefault(binding, set()).add(definition.name)

    def _claim_target(self, target_index_name: str, name: str) -> None:
        """Raise DuplicateNameError when another definition already writes into this target."""
        for other in self._definitions.values():
            if other.name != name and other.target_index_name == target_index_name:
                raise DuplicateNameError(
                    f"Target index {target_index_name!r} is already used by index {other.name!r}"
                )

    def _unlink(self, definition: IndexDefinition) -> None:
        for binding in definition.sources:
            names = self._by_source.get(binding)
            if names is None:
                continue
            names.discard(definition.name)
            if not names:
                del self._by_source[binding]

    async def create(
        self,
        name: str,
        target_index_name: str,
        sources: Iterable[SourceBinding | tuple[str, str]] = (),
    ) -> IndexDefinition:
        name = _require_text(name, "name")
        target_index_name = _require_text(target_index_name, "target_index_name")
        bindings = _normalize_sources(sources)
        now = utc_now()
        definition = IndexDefinition(
            name=name,
            target_index_name=target_index_name,
            sources=bindings,
            created_at=now,
            updated_at=now,
        )
        async with self._lock:
            self._claim_target(target_index_name, name)
            # Store raises DuplicateNameError for names it already holds
            await self._store.insert(definition)
            self._definitions[name] = definition
            self._link(definition)
        logger.info(
            "Index definition created",
            extra={"index_name": name, "target_index_name": target_index_name, "sources": len(bindings)},
        )
        return definition

    def get(self, name: str) -> IndexDefinition:
        definition = self._definitions.get(name)
        if definition is None:
            raise NotFoundError(f"Index {name!r} not found")
        return definition

    async def update(
        self,
        name: str,
        target_index_name: str | None = None,
        sources: Iterable[SourceBinding | tuple[str, str]] | None = None,
    ) -> IndexDefinition:
        """Fields left as None keep their current value."""
        changes: dict = {}
        if target_index_name is not None:
            changes["target_index_name"] = _require_text(target_index_name, "target_index_name")
        if sources is not None:
            changes["sources"] = _normalize_sources(sources)
        async with self._lock:
            current = self.get(name)
            if "target_index_name" in changes:
                self._claim_target(changes["target_index_name"], name)
            updated = current.model_copy(update={**changes, "updated_at": utc_now()})
            if not await self._store.replace(updated):
                raise NotFoundError(f"Index {name!r} not found")
            self._unlink(current)
            self._definitions[name] = updated
            self._link(updated)
        logger.info("Index definition updated", extra={"index_name": name, "fields": sorted(changes)})
        return updated

    async def delete(self, name: str) -> None:
        async with self._lock:
            current = self.get(name)
            await self._store.delete(name)
            self._unlink(current)
            del self._definitions[name]
        logger.info("Index definition deleted", extra={"index_name": name})
        for listener in self._delete_listeners:
            result = listener(name)
            if asyncio.iscoroutine(result):
                await result

    def find_indices_for_source(self, database: str, collection: str) -> set[str]:
        binding = SourceBinding(database=database, collection=collection)
        return set(self._by_source.get(binding, ()))

    async def detach_source(self, database: str, collection: str) -> list[str]:
        """Remove the binding from every index that monitors it. Returns the affected index names."""
        binding = SourceBinding.of(database, collection)
        detached: list[str] = []
        async with self._lock:
            for name in sorted(self._by_source.get(binding, ())):
                current = self._definitions[name]
                updated = current.model_copy(
                    update={
                        "sources": tuple(s for s in current.sources if s != binding),
                        "updated_at": utc_now(),
                    }
                )
                await self._store.replace(updated)
                self._unlink(current)
                self._definitions[name] = updated
                self._link(updated)
                detached.append(name)
        if detached:
            logger.info("Source detached", extra={"source": str(binding), "indices": detached})
        return detached

    # Kept last so the builtin `list` stays usable in the annotations above
    def list(self) -> list[IndexDefinition]:
        return [self._definitions[name] for name in sorted(self._definitions)]

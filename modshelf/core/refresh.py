"""
Resolves the derived state of a character's mods in the background.

A refresh lists the mods, publishes a cache entry with bare views and queues one
task per mod. A fixed pool of workers resolves each task's sub-results (preview,
primary entry, embedded metadata, details) and merges them one at a time. Every
merge checks the task's generation against the character's latest one, so the
results of a superseded refresh are dropped without touching the cache.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from modshelf.core.context import RepositoryContext
from modshelf.exceptions import ModShelfError
from modshelf.models.mods import ModEntry, ModView
from modshelf.storage.cache import CacheEntry
from modshelf.utils.naming import name_key

log = logging.getLogger(__name__)

UpdateListener = Callable[[str, ModView], None]


@dataclass
class RefreshTask:
    character: str
    generation: int
    mod: ModEntry
    done: asyncio.Future | None = field(default=None, repr=False)


class RefreshPipeline:
    """
    Long-lived worker pool pulling refresh tasks from one shared queue.
    """

    def __init__(
        self,
        context: RepositoryContext,
        max_workers: int | None = None,
        on_update: UpdateListener | None = None,
    ):
        """
        Args:
            context: The repository context whose cache receives the results.
            max_workers: Number of workers; defaults to the configured value.
            on_update: Optional callback invoked after every applied merge.
        """
        self.context = context
        self.max_workers = max_workers or context.settings.max_workers
        self.on_update = on_update
        self._queue: asyncio.Queue[RefreshTask] = asyncio.Queue()
        self._workers: dict[int, asyncio.Task] = {}
        self._pending: dict[str, tuple[int, list[asyncio.Future]]] = {}

    def _ensure_workers(self) -> None:
        started = 0
        for i in range(self.max_workers):
            worker = self._workers.get(i)
            if worker is None or worker.done():
                self._workers[i] = asyncio.create_task(
                    self._worker(i), name=f"refresh-worker-{i}"
                )
                started += 1
        if started:
            log.debug(f"Started {started} refresh worker(s).")

    def resize(self, max_workers: int) -> None:
        """
        Changes the pool size. Extra workers exit after their current task;
        missing ones are started right away if the pool is running.
        """
        self.max_workers = max_workers
        if any(not w.done() for w in self._workers.values()):
            self._ensure_workers()

    async def refresh(self, character: str) -> int:
        """
        Starts a new refresh of ``character`` and returns its generation token.
        The base listing is in the cache when this returns; sub-results follow.
        """
        self._ensure_workers()
        generations = self.context.generations
        generation = generations.next(character)
        mods = await self.context.store.list_mods(character)
        if not generations.is_current(character, generation):
            log.debug(f"Refresh {generation} of '{character}' superseded while listing.")
            return generation

        self.context.cache.put(
            CacheEntry(
                character=character,
                generation=generation,
                views=[ModView(mod=mod) for mod in mods],
            )
        )
        loop = asyncio.get_running_loop()
        futures = []
        for mod in mods:
            done = loop.create_future()
            futures.append(done)
            self._queue.put_nowait(RefreshTask(character, generation, mod, done))
        self._pending[name_key(character)] = (generation, futures)
        log.debug(f"Refresh {generation} of '{character}': {len(mods)} mod(s) queued.")
        return generation

    async def wait(self, character: str) -> CacheEntry | None:
        """Waits until the latest refresh of ``character`` has been fully resolved."""
        key = name_key(character)
        while True:
            generation, futures = self._pending.get(key, (None, []))
            if futures:
                await asyncio.gather(*futures)
            if self._pending.get(key, (None, []))[0] == generation:
                break
        self._pending.pop(key, None)
        return self.context.cache.peek(character)

    async def close(self) -> None:
        """Stops the workers; queued tasks are discarded."""
        for worker in self._workers.values():
            worker.cancel()
        await asyncio.gather(*self._workers.values(), return_exceptions=True)
        self._workers = {}
        while not self._queue.empty():
            self._finish(self._queue.get_nowait())
            self._queue.task_done()
        log.debug("Refresh workers stopped.")

    @staticmethod
    def _finish(task: RefreshTask) -> None:
        if task.done is not None and not task.done.done():
            task.done.set_result(None)

    async def _worker(self, index: int) -> None:
        while index < self.max_workers:
            task = await self._queue.get()
            if index >= self.max_workers:
                # The pool shrank while this worker waited.
                self._queue.put_nowait(task)
                self._queue.task_done()
                return
            try:
                if not self.context.generations.is_current(task.character, task.generation):
                    log.debug(f"Worker {index}: skipping stale task for '{task.mod.name}'.")
                    continue
                await self._process(task)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log.warning(f"Refresh of '{task.mod.name}' failed: {e}")
            finally:
                self._finish(task)
                self._queue.task_done()

    async def _process(self, task: RefreshTask) -> None:
        # One backend call at a time per worker, so max_workers bounds the
        # number of concurrent 7-Zip processes.
        for kind, loader in (
            ("preview", self._load_preview),
            ("primary", self._load_primary),
            ("metadata", self._load_metadata),
            ("details", self._load_details),
        ):
            if not self.context.generations.is_current(task.character, task.generation):
                return
            await self._resolve(task, kind, loader)

    async def _resolve(
        self,
        task: RefreshTask,
        kind: str,
        loader: Callable[[ModEntry], Awaitable[dict[str, Any]]],
    ) -> None:
        try:
            fields = await loader(task.mod)
        except (ModShelfError, OSError) as e:
            log.debug(f"Could not resolve {kind} of '{task.mod.name}': {e}")
            fields = {}
        self._apply(task, kind, fields)

    def _apply(self, task: RefreshTask, kind: str, fields: dict[str, Any]) -> bool:
        """Merges one sub-result into the cached view if the task is still current."""
        if not self.context.generations.is_current(task.character, task.generation):
            return False
        entry = self.context.cache.peek(task.character)
        if entry is None or entry.generation != task.generation:
            return False
        view = entry.view_for(task.mod.path)
        if view is None:
            return False
        for name, value in fields.items():
            setattr(view, name, value)
        view.resolved.add(kind)
        if self.on_update:
            self.on_update(task.character, view)
        return True

    async def _load_preview(self, mod: ModEntry) -> dict[str, Any]:
        return {"preview": await self.context.inspector.read_preview(mod)}

    async def _load_primary(self, mod: ModEntry) -> dict[str, Any]:
        return {"primary_name": await self.context.inspector.primary_name(mod)}

    async def _load_metadata(self, mod: ModEntry) -> dict[str, Any]:
        inspector = self.context.inspector
        metadata = await inspector.read_metadata(mod)
        page_url = metadata.page_url if metadata else None
        if not page_url:
            details = await inspector.read_details(mod)
            page_url = details.page_url if details else None
        return {
            "page_url": page_url,
            "image_url": metadata.image_url if metadata else None,
        }

    async def _load_details(self, mod: ModEntry) -> dict[str, Any]:
        details = await self.context.inspector.read_details(mod)
        return {"update_url": details.update_url if details else None}

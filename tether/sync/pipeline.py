"""Remote write pipeline: blobs, tree, commit, then ref update."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Sequence

from ..errors import ApiError, SyncError
from .archive import ArchiveEntry
from .github import GitHubClient, TreeEntry

logger = logging.getLogger("tether.sync.pipeline")


class PipelineState(str, Enum):
    IDLE = "IDLE"
    CHECK_ACCESS = "CHECK_ACCESS"
    GET_HEAD = "GET_HEAD"
    CREATE_BLOBS = "CREATE_BLOBS"
    CREATE_TREE = "CREATE_TREE"
    CREATE_COMMIT = "CREATE_COMMIT"
    UPDATE_REF = "UPDATE_REF"
    DONE = "DONE"
    FAILED = "FAILED"


@dataclass(frozen=True)
class BlobInfo:
    relative_path: str
    sha: str
    mode: str = "100644"


@dataclass
class BlobBatch:
    """Progress of the concurrent blob uploads for one push."""

    expected: int
    completed: int = 0
    failed: int = 0
    blobs: List[BlobInfo] = field(default_factory=list)

    @property
    def finished(self) -> bool:
        return self.completed + self.failed == self.expected


@dataclass
class PushOutcome:
    """Where a push ended and what it created on the way."""

    state: PipelineState = PipelineState.IDLE
    failed_phase: Optional[PipelineState] = None
    error: Optional[SyncError] = None
    head_sha: Optional[str] = None
    tree_sha: Optional[str] = None
    commit_sha: Optional[str] = None
    blobs: List[BlobInfo] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.state == PipelineState.DONE

    @property
    def status_code(self) -> Optional[int]:
        return self.error.status_code if self.error is not None else None


class PushPipeline:
    """Publish a set of file changes as one commit on the configured branch.

    Each state is entered only after the previous request succeeded. The first
    failure moves the pipeline to ``FAILED`` and no later request is sent.
    """

    def __init__(
        self,
        client: GitHubClient,
        message: str,
        expected_head: Optional[str] = None,
        max_parallel_blobs: int = 8,
        on_state: Optional[Callable[[PipelineState], None]] = None,
    ):
        self.client = client
        self.message = message
        self.expected_head = expected_head
        self.max_parallel_blobs = max(1, max_parallel_blobs)
        self.on_state = on_state
        self.outcome = PushOutcome()
        self.batch: Optional[BlobBatch] = None

    @property
    def state(self) -> PipelineState:
        return self.outcome.state

    async def run(
        self,
        items: Sequence[ArchiveEntry],
        removed_paths: Sequence[str] = (),
    ) -> PushOutcome:
        self.outcome = PushOutcome()
        try:
            self._enter(PipelineState.CHECK_ACCESS)
            await self.client.check_access()

            self._enter(PipelineState.GET_HEAD)
            head = await self.client.get_branch_head()
            if self.expected_head and head != self.expected_head:
                raise ApiError(
                    f"Remote moved since snapshot: expected {self.expected_head[:7]}, found {head[:7]}",
                    409,
                )
            self.outcome.head_sha = head
            base_tree = await self.client.get_commit_tree(head)

            if not items and not removed_paths:
                logger.info("Nothing to push")
                self._enter(PipelineState.DONE)
                return self.outcome

            self._enter(PipelineState.CREATE_BLOBS)
            self.outcome.blobs = await self._create_blobs(items)

            self._enter(PipelineState.CREATE_TREE)
            entries = [TreeEntry(blob.relative_path, blob.sha, blob.mode) for blob in self.outcome.blobs]
            entries.extend(TreeEntry(path, None) for path in removed_paths)
            self.outcome.tree_sha = await self.client.create_tree(base_tree, entries)

            self._enter(PipelineState.CREATE_COMMIT)
            self.outcome.commit_sha = await self.client.create_commit(
                self.message, self.outcome.tree_sha, head
            )

            self._enter(PipelineState.UPDATE_REF)
            await self.client.update_ref(self.outcome.commit_sha)
        except SyncError as exc:
            self._fail(exc)
            return self.outcome

        self._enter(PipelineState.DONE)
        logger.info(
            "Pushed %d files and %d removals as %s",
            len(self.outcome.blobs),
            len(removed_paths),
            self.outcome.commit_sha,
        )
        return self.outcome

    async def _create_blobs(self, items: Sequence[ArchiveEntry]) -> List[BlobInfo]:
        batch = BlobBatch(expected=len(items))
        self.batch = batch
        semaphore = asyncio.Semaphore(self.max_parallel_blobs)

        async def upload(item: ArchiveEntry) -> BlobInfo:
            async with semaphore:
                try:
                    sha = await self.client.create_blob(item.content)
                except SyncError:
                    batch.failed += 1
                    raise
            batch.completed += 1
            logger.debug("Blob %d/%d: %s", batch.completed, batch.expected, item.relative_path)
            return BlobInfo(item.relative_path, sha, item.mode)

        tasks = [asyncio.ensure_future(upload(item)) for item in items]
        try:
            batch.blobs = list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        return batch.blobs

    def _enter(self, state: PipelineState) -> None:
        logger.debug("Push pipeline: %s -> %s", self.outcome.state.value, state.value)
        self.outcome.state = state
        if self.on_state:
            self.on_state(state)

    def _fail(self, exc: SyncError) -> None:
        failed_phase = self.outcome.state
        exc.phase = exc.phase or failed_phase.value
        self.outcome.failed_phase = failed_phase
        self.outcome.error = exc
        logger.error("Push failed during %s: %s", failed_phase.value, exc)
        self._enter(PipelineState.FAILED)


__all__ = [
    "BlobBatch",
    "BlobInfo",
    "PipelineState",
    "PushOutcome",
    "PushPipeline",
]

"""
Chunk processor - processes one bounded slice of a sync job.

For each candidate in the slice the proposed content is fetched, compared
with the stored record (update mode only) and upserted. Failures are
isolated per item; only errors that would fail every remaining item
(authentication, configuration) abort the chunk.
"""

import asyncio
import logging
import time
from typing import Any, List, Optional

from core.exceptions import (
    AuthenticationError,
    ChunkFatalError,
    ConfigurationError,
    ItemError,
    SyncException
)
from models.base import SyncMode, SyncType
from schemas.sync import ChunkResult, ItemOutcome
from sync.providers.base import ContentProvider
from sync.retry import retry_async

logger = logging.getLogger(__name__)

CHUNK_FATAL_ERRORS = (AuthenticationError, ConfigurationError)


def _describe(error: Exception) -> str:
    message = error.message if isinstance(error, SyncException) else str(error)
    return f"{type(error).__name__}: {message}"


class ChunkProcessor:
    """
    Process chunks for one content provider.

    Attributes:
        provider: Source and sink of the sync type's content
        max_attempts: Retry budget for fetching the candidate page
        retry_base_delay: Backoff base for the candidate page fetch
    """

    def __init__(
        self,
        provider: ContentProvider,
        max_attempts: Optional[int] = None,
        retry_base_delay: Optional[float] = None,
        sleep=asyncio.sleep
    ):
        self.provider = provider
        self.max_attempts = max_attempts
        self.retry_base_delay = retry_base_delay
        self.sleep = sleep

    async def process(
        self,
        sync_type: SyncType,
        offset: int,
        batch_size: int,
        mode: SyncMode = SyncMode.CLEAR,
        resume_token: Optional[str] = None,
        total: Optional[int] = None
    ) -> ChunkResult:
        """
        Process up to batch_size items starting at offset.

        Args:
            sync_type: Sync type being processed (for logs and error context)
            offset: Items already attempted in this job
            batch_size: Maximum items to attempt
            mode: clear writes every item, update skips unchanged content
            resume_token: Provider cursor from the previous chunk
            total: Work-set size if known

        Returns:
            ChunkResult with one outcome per attempted item

        Raises:
            ChunkFatalError: Candidate fetch failed after retries, or an
                authentication/configuration error occurred
        """
        started = time.monotonic()
        context = {
            "sync_type": sync_type.value,
            "offset": offset,
            "batch_size": batch_size,
            "provider": self.provider.name,
        }
        logger.info(f"Processing {sync_type.value} chunk at offset {offset} (batch_size={batch_size}, mode={mode.value})")

        try:
            page = await retry_async(
                lambda: self.provider.fetch_candidates(offset, batch_size, resume_token),
                f"Fetching {sync_type.value} candidates at offset {offset}",
                max_attempts=self.max_attempts,
                base_delay=self.retry_base_delay,
                sleep=self.sleep
            )
        except Exception as e:
            raise ChunkFatalError(
                f"Failed to fetch {sync_type.value} candidates: {_describe(e)}",
                context=context,
                original_exception=e
            )

        if page.total is not None:
            total = page.total

        outcomes: List[ItemOutcome] = []
        for index, raw in enumerate(page.items):
            outcomes.append(await self._process_item(sync_type, mode, raw, offset + index, context))

        attempted = len(page.items)
        if attempted == 0:
            has_more = False
        elif total is not None:
            has_more = offset + batch_size < total
        else:
            has_more = attempted >= batch_size

        result = ChunkResult(
            offset=offset,
            items_attempted=outcomes,
            next_offset=offset + attempted,
            has_more=has_more,
            next_resume_token=page.next_resume_token,
            total=total,
            duration_seconds=time.monotonic() - started
        )

        logger.info(
            f"Chunk {sync_type.value}@{offset} done: {len(result.succeeded)} succeeded "
            f"({len(result.skipped)} unchanged), {len(result.failed)} failed, has_more={has_more}"
        )
        return result

    async def _process_item(
        self,
        sync_type: SyncType,
        mode: SyncMode,
        raw: Any,
        position: int,
        context: dict
    ) -> ItemOutcome:
        item_id = f"item-{position}"
        try:
            item_id = self.provider.item_id(raw)
            proposed = await self.provider.fetch_proposed_content(raw)

            if mode == SyncMode.UPDATE:
                existing = await self.provider.get_existing(item_id)
                if existing is not None and not self.provider.has_changed(existing, proposed):
                    logger.debug(f"Skipping {sync_type.value} item {item_id}: content unchanged")
                    return ItemOutcome(id=item_id, success=True, skipped_no_change=True)

            await self.provider.upsert(proposed)
            return ItemOutcome(id=item_id, success=True)

        except CHUNK_FATAL_ERRORS as e:
            raise ChunkFatalError(
                f"Aborting {sync_type.value} chunk at item {item_id}: {_describe(e)}",
                context={**context, "item_id": item_id},
                original_exception=e
            )

        except Exception as e:
            error = ItemError(
                item_id,
                _describe(e),
                context={**context, "position": position},
                original_exception=e
            )
            logger.error(
                f"Failed to process {sync_type.value} item {item_id}: {error.message}",
                extra={"error_context": error.to_dict()}
            )
            return ItemOutcome(id=item_id, success=False, error_message=error.message)

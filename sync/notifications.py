"""
In-process change notifications for sync progress rows.

Every write to the progress store publishes the full updated row.
Subscribers can filter by sync type; a failing subscriber is logged and
never breaks the write that triggered it.
"""

import inspect
import itertools
import logging
from typing import Awaitable, Callable, Dict, Optional, Tuple, Union

from models.base import SyncType
from schemas.sync import SyncProgressRead

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[SyncProgressRead], Union[None, Awaitable[None]]]


class ProgressNotifier:
    """Publish/subscribe channel for progress row changes"""

    def __init__(self):
        self._subscribers: Dict[int, Tuple[ProgressCallback, Optional[SyncType]]] = {}
        self._ids = itertools.count(1)

    def subscribe(
        self,
        callback: ProgressCallback,
        sync_type: Optional[SyncType] = None
    ) -> Callable[[], None]:
        """
        Register a callback for row changes.

        Args:
            callback: Sync or async callable receiving the updated row
            sync_type: Only deliver rows of this type (None = all types)

        Returns:
            A function that removes the subscription
        """
        subscription_id = next(self._ids)
        self._subscribers[subscription_id] = (callback, sync_type)

        def unsubscribe():
            self._subscribers.pop(subscription_id, None)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def publish(self, progress: SyncProgressRead):
        for callback, sync_type in list(self._subscribers.values()):
            if sync_type is not None and sync_type != progress.type:
                continue
            try:
                result = callback(progress)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(
                    f"Progress subscriber failed for {progress.type.value}: {str(e)}",
                    exc_info=True
                )

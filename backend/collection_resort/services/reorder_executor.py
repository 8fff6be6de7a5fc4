# collection_resort/services/reorder_executor.py
"""
Reorder Executor
================
Applies a ranked order to a manual collection on the catalog platform.

All moves go out in a single mutation, so an order longer than the
platform accepts per request is refused up front. The platform may finish the move
synchronously or hand back a job handle; in the second case the job is
polled at a fixed interval for a bounded number of attempts. Running out of
attempts is not a failure: the platform accepted the moves, we simply could
not confirm completion, so the outcome is `accepted_unconfirmed`.

The mutation itself is never retried automatically.
"""

import logging
from typing import Dict, List, Optional

from tenacity import (
    AsyncRetrying,
    RetryError,
    before_sleep_log,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    wait_fixed,
)

from collection_resort.adapters.base import BaseCatalogAdapter, CatalogAPIError, CatalogTransportError
from collection_resort.config import get_settings
from collection_resort.domain import JobStatus, RankedOrder, ReorderJob

logger = logging.getLogger(__name__)

EMPTY_ORDER_MESSAGE = "No products found in this collection"


def build_moves(ranked_order: RankedOrder) -> List[Dict[str, str]]:
    """One move per product; positions are decimal strings as the Admin API expects."""
    return [
        {"id": product_id, "newPosition": str(position)}
        for position, product_id in enumerate(ranked_order.product_ids)
    ]


class ReorderExecutor:
    def __init__(
        self,
        adapter: BaseCatalogAdapter,
        merchant_context: Dict,
        poll_interval: Optional[float] = None,
        max_attempts: Optional[int] = None,
        max_moves: Optional[int] = None,
    ):
        settings = get_settings()
        self.adapter = adapter
        self.merchant_context = merchant_context
        self.poll_interval = poll_interval if poll_interval is not None else settings.REORDER_POLL_INTERVAL_SECONDS
        self.max_attempts = max_attempts or settings.REORDER_POLL_MAX_ATTEMPTS
        self.max_moves = max_moves or settings.REORDER_MAX_MOVES

    async def apply(self, collection_id: str, ranked_order: RankedOrder) -> ReorderJob:
        moves = build_moves(ranked_order)
        if not moves:
            return ReorderJob(external_job_id=None, status=JobStatus.FAILED, message=EMPTY_ORDER_MESSAGE)
        if len(moves) > self.max_moves:
            logger.error(f"❌ Refusing to submit {len(moves)} moves for {collection_id}, limit is {self.max_moves}")
            return ReorderJob(
                external_job_id=None,
                status=JobStatus.FAILED,
                message=f"Cannot reorder {len(moves)} products in one request (limit {self.max_moves})",
            )

        logger.info(f"Submitting {len(moves)} moves for collection {collection_id}")
        try:
            submission = await self.adapter.reorder_collection(self.merchant_context, collection_id, moves)
        except CatalogAPIError as e:
            logger.error(f"❌ Reorder rejected for {collection_id}: {e}")
            return ReorderJob(external_job_id=None, status=JobStatus.FAILED, message=str(e))
        except CatalogTransportError as e:
            logger.error(f"❌ Reorder request failed for {collection_id}: {e}")
            return ReorderJob(
                external_job_id=None,
                status=JobStatus.FAILED,
                message=f"Reorder request failed: {e}",
            )

        if submission.user_errors:
            logger.error(f"❌ Reorder rejected for {collection_id}: {submission.user_errors[0]}")
            return ReorderJob(
                external_job_id=submission.job_id,
                status=JobStatus.FAILED,
                message=submission.user_errors[0],
            )

        if not submission.job_id or submission.done:
            logger.info(f"✅ Collection {collection_id} reordered")
            return ReorderJob(
                external_job_id=submission.job_id,
                status=JobStatus.DONE,
                message=f"Reordered {len(moves)} products",
            )

        return await self._await_job(submission.job_id, len(moves))

    async def _await_job(self, job_id: str, move_count: int) -> ReorderJob:
        attempts = 0

        async def check_done() -> bool:
            nonlocal attempts
            attempts += 1
            return await self.adapter.get_job_status(self.merchant_context, job_id)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_fixed(self.poll_interval),
            retry=(
                retry_if_result(lambda done: not done)
                | retry_if_exception_type((CatalogTransportError, CatalogAPIError))
            ),
            before_sleep=before_sleep_log(logger, logging.DEBUG),
        )
        try:
            await retrying(check_done)
        except RetryError:
            logger.warning(f"⏰ Reorder job {job_id} not confirmed after {attempts} polls")
            return ReorderJob(
                external_job_id=job_id,
                status=JobStatus.UNKNOWN_TIMEOUT,
                message="Reorder accepted but completion could not be confirmed",
                attempts=attempts,
            )

        logger.info(f"✅ Reorder job {job_id} done after {attempts} polls")
        return ReorderJob(
            external_job_id=job_id,
            status=JobStatus.DONE,
            message=f"Reordered {move_count} products",
            attempts=attempts,
        )

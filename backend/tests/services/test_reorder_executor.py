# backend/tests/services/test_reorder_executor.py
"""
Tests for the Reorder Executor: move building, submission outcomes and
bounded job polling.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from collection_resort.adapters.base import CatalogAPIError, CatalogTransportError, ReorderSubmission
from collection_resort.domain import JobStatus, RankedOrder, ReorderOutcome
from collection_resort.services.reorder_executor import EMPTY_ORDER_MESSAGE, ReorderExecutor, build_moves

CONTEXT = {"shop_id": "demo.myshopify.com", "access_token": "shpat_test"}
ORDER = RankedOrder(product_ids=("gid://shopify/Product/2", "gid://shopify/Product/1"))


@pytest.fixture
def adapter():
    adapter = MagicMock()
    adapter.reorder_collection = AsyncMock(return_value=ReorderSubmission(job_id=None, done=True))
    adapter.get_job_status = AsyncMock(return_value=True)
    return adapter


def _executor(adapter, max_attempts=3):
    return ReorderExecutor(adapter, CONTEXT, poll_interval=0, max_attempts=max_attempts)


def test_build_moves_uses_string_positions():
    assert build_moves(ORDER) == [
        {"id": "gid://shopify/Product/2", "newPosition": "0"},
        {"id": "gid://shopify/Product/1", "newPosition": "1"},
    ]


def test_same_order_same_moves():
    again = RankedOrder(product_ids=tuple(ORDER.product_ids))
    assert build_moves(ORDER) == build_moves(again)


@pytest.mark.asyncio
async def test_synchronous_completion_is_success(adapter):
    job = await _executor(adapter).apply("gid://shopify/Collection/9", ORDER)

    assert job.status is JobStatus.DONE
    assert job.outcome is ReorderOutcome.SUCCESS
    adapter.reorder_collection.assert_awaited_once()
    adapter.get_job_status.assert_not_awaited()


@pytest.mark.asyncio
async def test_order_over_move_limit_is_refused(adapter):
    executor = ReorderExecutor(adapter, CONTEXT, poll_interval=0, max_moves=250)
    order = RankedOrder(product_ids=tuple(f"gid://shopify/Product/{i}" for i in range(300)))

    job = await executor.apply("9", order)

    assert job.status is JobStatus.FAILED
    assert "limit 250" in job.message
    adapter.reorder_collection.assert_not_awaited()


@pytest.mark.asyncio
async def test_polls_until_job_done(adapter):
    adapter.reorder_collection.return_value = ReorderSubmission(job_id="gid://shopify/Job/1", done=False)
    adapter.get_job_status.side_effect = [False, True]

    job = await _executor(adapter).apply("9", ORDER)

    assert job.status is JobStatus.DONE
    assert job.attempts == 2
    assert job.external_job_id == "gid://shopify/Job/1"


@pytest.mark.asyncio
async def test_never_done_is_accepted_unconfirmed(adapter):
    adapter.reorder_collection.return_value = ReorderSubmission(job_id="gid://shopify/Job/1", done=False)
    adapter.get_job_status.return_value = False

    job = await _executor(adapter, max_attempts=3).apply("9", ORDER)

    assert job.status is JobStatus.UNKNOWN_TIMEOUT
    assert job.outcome is ReorderOutcome.ACCEPTED_UNCONFIRMED
    assert job.attempts == 3
    assert adapter.get_job_status.await_count == 3


@pytest.mark.asyncio
async def test_poll_errors_consume_attempts(adapter):
    adapter.reorder_collection.return_value = ReorderSubmission(job_id="gid://shopify/Job/1", done=False)
    adapter.get_job_status.side_effect = [CatalogTransportError("reset"), True]

    job = await _executor(adapter).apply("9", ORDER)

    assert job.status is JobStatus.DONE
    assert job.attempts == 2


@pytest.mark.asyncio
async def test_user_errors_fail_with_first_message(adapter):
    adapter.reorder_collection.return_value = ReorderSubmission(
        job_id=None,
        user_errors=["Collection is not manually sorted", "second"],
    )

    job = await _executor(adapter).apply("9", ORDER)

    assert job.status is JobStatus.FAILED
    assert job.message == "Collection is not manually sorted"
    adapter.get_job_status.assert_not_awaited()


@pytest.mark.asyncio
async def test_graphql_errors_fail_without_retry(adapter):
    adapter.reorder_collection.side_effect = CatalogAPIError(["Access denied"])

    job = await _executor(adapter).apply("9", ORDER)

    assert job.outcome is ReorderOutcome.FAILED
    assert job.message == "Access denied"
    assert adapter.reorder_collection.await_count == 1


@pytest.mark.asyncio
async def test_transport_error_fails(adapter):
    adapter.reorder_collection.side_effect = CatalogTransportError("HTTP 502")

    job = await _executor(adapter).apply("9", ORDER)

    assert job.outcome is ReorderOutcome.FAILED
    assert "HTTP 502" in job.message


@pytest.mark.asyncio
async def test_empty_order_sends_nothing(adapter):
    job = await _executor(adapter).apply("9", RankedOrder(product_ids=()))

    assert job.outcome is ReorderOutcome.FAILED
    assert job.message == EMPTY_ORDER_MESSAGE
    adapter.reorder_collection.assert_not_awaited()

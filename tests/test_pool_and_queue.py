"""Liquidity pool bookkeeping, withdrawal state machine and the FIFO queue scan."""

from datetime import timedelta

import pytest

from baskt_querier.ledger import LedgerPool, LedgerWithdrawRequest
from baskt_querier.records import (
    DepositRecord,
    ProcessingEntry,
    WithdrawalRequestRecord,
    WithdrawalStatus,
    derive_withdrawal_state,
)

from conftest import NOW

P = 1_000_000


def _pool(ledger, **overrides):
    values = dict(
        address=ledger.liquidity_pool_address(),
        total_liquidity=10_000 * P,
        total_shares=9_000 * P,
        rate_limit_period_secs=1800,
        last_rate_limit_reset=NOW - timedelta(minutes=10),
    )
    values.update(overrides)
    return ledger.set_pool(LedgerPool(**values))


def _entry(tx, burned, processed=None, minutes=5):
    return ProcessingEntry(
        ts=NOW - timedelta(minutes=minutes),
        tx=tx,
        lp_tokens_burned=burned,
        amount_processed=processed if processed is not None else burned,
    )


class TestWithdrawalState:
    def test_status_is_a_function_of_history(self):
        assert derive_withdrawal_state(10, []) == (WithdrawalStatus.QUEUED, 10)
        assert derive_withdrawal_state(10, [_entry("a", 4)]) == (WithdrawalStatus.PROCESSING, 6)
        assert derive_withdrawal_state(10, [_entry("a", 4), _entry("b", 6)]) == (WithdrawalStatus.COMPLETED, 0)

    def test_record_ignores_stale_status(self):
        record = WithdrawalRequestRecord(
            request_id=1, provider="p", requested_lp_amount=10, status="COMPLETED", remaining_lp=0
        )
        assert record.status == "QUEUED"
        assert record.remaining_lp == 10

    async def test_processing_appends_are_deduplicated(self, querier):
        await querier.pool.create_withdrawal_request(
            WithdrawalRequestRecord(request_id=1, provider="alice", requested_lp_amount=10 * P)
        )
        await querier.pool.record_withdrawal_processing(1, _entry("tx-a", 4 * P))
        again = await querier.pool.record_withdrawal_processing(1, _entry("tx-a", 4 * P))
        assert again.data.status == "PROCESSING"
        assert again.data.remaining_lp == 6 * P

        done = (await querier.pool.record_withdrawal_processing(1, _entry("tx-b", 6 * P))).data
        assert done.status == "COMPLETED"
        assert len(done.processing_history) == 2

        synced = (await querier.pool.check_and_update_withdrawal_request_status(1)).data
        assert synced.status == "COMPLETED"

    async def test_unknown_request(self, querier):
        result = await querier.pool.record_withdrawal_processing(99, _entry("tx", 1))
        assert result.status_code == 404


class TestPool:
    async def test_resync_keeps_tracker_fields(self, querier, ledger):
        _pool(ledger)
        await querier.pool.resync_liquidity_pool()
        await querier.pool.update_pool_fees(latest_apr=12.5, fees_collected_30d=3 * P, total_fees_collected=9 * P)

        ledger.pool.total_liquidity = 20_000 * P
        record = (await querier.pool.resync_liquidity_pool()).data
        assert record.total_liquidity == 20_000 * P
        assert record.latest_apr == 12.5
        assert record.total_fees_collected == 9 * P

    async def test_pool_falls_back_to_ledger(self, querier, ledger):
        _pool(ledger)
        record = (await querier.pool.get_liquidity_pool()).data
        assert record.pool_address == ledger.liquidity_pool_address()

    async def test_user_deposits_summary(self, querier, ledger):
        pool = _pool(ledger)
        for i, amount in enumerate((100 * P, 50 * P)):
            await querier.pool.create_liquidity_deposit(
                DepositRecord(
                    transaction_signature=f"dep-{i}",
                    provider="Alice",
                    pool_address=pool.address,
                    deposit_amount=amount,
                    shares_minted=amount,
                    timestamp=NOW - timedelta(days=i),
                )
            )
        duplicate = await querier.pool.create_liquidity_deposit(
            DepositRecord(
                transaction_signature="dep-0",
                provider="Alice",
                pool_address=pool.address,
                deposit_amount=1,
                timestamp=NOW,
            )
        )
        assert duplicate.data is False

        await querier.pool.create_withdrawal_request(
            WithdrawalRequestRecord(request_id=1, provider="alice", requested_lp_amount=40 * P)
        )
        await querier.pool.record_withdrawal_processing(1, _entry("w1", 10 * P, processed=11 * P))

        summary = (await querier.pool.get_user_deposits("alice")).data
        assert summary.total_deposited == 150 * P
        assert summary.total_lp_requested == 40 * P
        assert summary.total_lp_burned == 10 * P
        assert summary.total_withdrawn == 11 * P
        assert summary.pending_lp == 30 * P

        providers = (await querier.pool.get_all_deposits()).data
        assert len(providers) == 1
        assert providers[0].deposit_count == 2
        assert providers[0].withdrawal_count == 1


class TestWithdrawQueue:
    def _queue(self, ledger, providers):
        for request_id, provider in enumerate(providers):
            ledger.add_withdraw_request(
                LedgerWithdrawRequest(
                    address="",
                    request_id=request_id,
                    provider=provider,
                    requested_lp_amount=10 * P,
                    remaining_lp=10 * P,
                    requested_at=NOW - timedelta(hours=10 - request_id),
                )
            )

    async def test_positions_start_at_first_live_index(self, querier, ledger):
        _pool(ledger)
        self._queue(ledger, ["alice", "bob", "carol", "alice"])
        ledger.pool.withdraw_queue_tail = 0
        ledger.remove_withdraw_request(0)
        ledger.remove_withdraw_request(2)

        items = (await querier.withdraw_queue.get_withdraw_queue()).data
        assert [(i.request_id, i.queue_position) for i in items] == [(1, 1), (3, 3)]

    async def test_metadata_status_is_joined(self, querier, ledger):
        _pool(ledger)
        self._queue(ledger, ["alice"])
        await querier.pool.create_withdrawal_request(
            WithdrawalRequestRecord(request_id=0, provider="alice", requested_lp_amount=10 * P)
        )
        await querier.pool.record_withdrawal_processing(0, _entry("p1", 2 * P))

        items = (await querier.withdraw_queue.get_withdraw_queue()).data
        assert items[0].status == "PROCESSING"
        assert items[0].amount_processed == 2 * P

    async def test_stats(self, querier, ledger):
        _pool(ledger)
        self._queue(ledger, ["bob", "alice", "alice"])

        stats = (await querier.withdraw_queue.get_withdraw_queue_stats("ALICE")).data
        assert stats.total_items == 3
        assert stats.total_pending_lp == 30 * P
        assert stats.processing_rate_per_hour == pytest.approx(2.0)
        assert stats.processing_interval_minutes == pytest.approx(30.0)
        assert stats.user_queue_position == 2
        assert stats.estimated_wait_minutes == pytest.approx(60.0)
        assert stats.is_processing_now is True
        assert stats.next_processing_time == NOW + timedelta(minutes=20)

    async def test_user_items_and_failed_fetches(self, querier, ledger):
        _pool(ledger)
        self._queue(ledger, ["alice", "bob"])
        ledger.failing.add(ledger.withdraw_request_address(1))

        items = (await querier.withdraw_queue.get_user_withdraw_queue_items("alice")).data
        assert [i.request_id for i in items] == [0]
        all_items = (await querier.withdraw_queue.get_withdraw_queue()).data
        assert len(all_items) == 1

    async def test_no_pool(self, querier):
        result = await querier.withdraw_queue.get_withdraw_queue_stats()
        assert result.status_code == 404

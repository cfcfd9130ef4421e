"""PoolQuerier — liquidity pool snapshot, deposits, and withdrawal-request bookkeeping.

The pool record mirrors ledger truth and is only ever rewritten by
:meth:`PoolQuerier.resync_liquidity_pool`; the fee fields on it belong to
the LP tracker.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from datetime import datetime
from typing import Callable, Dict, Optional

import structlog

from baskt_querier.codec import utcnow
from baskt_querier.entities import ProviderSummary, QueryResult, UserDeposits
from baskt_querier.gateway import MetadataGateway
from baskt_querier.ledger import LedgerPool, LedgerReader
from baskt_querier.queriers.base import envelope, ledger_call
from baskt_querier.records import DepositRecord, PoolRecord, ProcessingEntry, WithdrawalRequestRecord

logger = structlog.get_logger()


def _pool_record(pool: LedgerPool) -> PoolRecord:
    return PoolRecord(
        pool_address=pool.address,
        total_liquidity=pool.total_liquidity,
        lp_mint=pool.lp_mint,
        total_shares=pool.total_shares,
        last_update_ts=pool.last_update_timestamp,
        deposit_fee_bps=pool.deposit_fee_bps,
        withdrawal_fee_bps=pool.withdrawal_fee_bps,
        min_deposit=pool.min_deposit,
        pending_lp_tokens=pool.pending_lp_tokens,
        withdraw_queue_head=pool.withdraw_queue_head,
        withdraw_queue_tail=pool.withdraw_queue_tail,
    )


class PoolQuerier:
    def __init__(
        self,
        gateway: MetadataGateway,
        ledger: LedgerReader,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._gateway = gateway
        self._ledger = ledger
        self._clock = clock

    @property
    def pool_address(self) -> str:
        return self._ledger.liquidity_pool_address()

    # ------------------------------------------------------------------
    # Pool snapshot
    # ------------------------------------------------------------------

    async def resync_pool(self) -> Optional[PoolRecord]:
        pool = await ledger_call(self._ledger.get_liquidity_pool(), "Failed to read liquidity pool")
        if pool is None:
            return None
        record = await self._gateway.upsert_pool(_pool_record(pool))
        logger.info("liquidity_pool_resynced", pool=record.pool_address, total_liquidity=record.total_liquidity)
        return record

    async def load_pool(self) -> Optional[PoolRecord]:
        record = await self._gateway.get_pool(self.pool_address)
        if record is None:
            record = await self.resync_pool()
        return record

    @envelope("get_liquidity_pool")
    async def get_liquidity_pool(self) -> QueryResult:
        record = await self.load_pool()
        if record is None:
            return QueryResult.not_found("Liquidity pool not found")
        return QueryResult.ok(record)

    @envelope("resync_liquidity_pool")
    async def resync_liquidity_pool(self) -> QueryResult:
        record = await self.resync_pool()
        if record is None:
            return QueryResult.not_found("Liquidity pool not found on ledger")
        return QueryResult.ok(record)

    # ------------------------------------------------------------------
    # Deposits & withdrawals
    # ------------------------------------------------------------------

    @envelope("create_liquidity_deposit")
    async def create_liquidity_deposit(self, record: DepositRecord) -> QueryResult:
        created = await self._gateway.create_deposit(record)
        return QueryResult.ok(created, message=None if created else "Deposit already recorded")

    @envelope("create_withdrawal_request")
    async def create_withdrawal_request(self, record: WithdrawalRequestRecord) -> QueryResult:
        created = await self._gateway.create_withdrawal_request(record)
        return QueryResult.ok(created, message=None if created else "Withdrawal request already recorded")

    @envelope("record_withdrawal_processing")
    async def record_withdrawal_processing(self, request_id: int, entry: ProcessingEntry) -> QueryResult:
        """Append one partial-processing event; status follows from the full history."""
        if entry.lp_tokens_burned < 0 or entry.amount_processed < 0:
            raise ValueError("processing amounts must not be negative")
        record = await self._gateway.append_withdrawal_processing(request_id, entry)
        if record is None:
            return QueryResult.not_found(f"Withdrawal request {request_id} not found")
        return QueryResult.ok(record)

    @envelope("check_and_update_withdrawal_request_status")
    async def check_and_update_withdrawal_request_status(self, request_id: int) -> QueryResult:
        record = await self._gateway.sync_withdrawal_status(request_id)
        if record is None:
            return QueryResult.not_found(f"Withdrawal request {request_id} not found")
        return QueryResult.ok(record)

    @envelope("get_withdrawal_request")
    async def get_withdrawal_request(self, request_id: int) -> QueryResult:
        record = await self._gateway.get_withdrawal_request(request_id)
        if record is None:
            return QueryResult.not_found(f"Withdrawal request {request_id} not found")
        return QueryResult.ok(record)

    @envelope("get_user_deposits")
    async def get_user_deposits(self, provider: str) -> QueryResult:
        deposits, withdrawals = await asyncio.gather(
            self._gateway.get_deposits(provider=provider),
            self._gateway.get_withdrawal_requests(provider=provider),
        )
        summary = UserDeposits(
            provider=provider,
            deposits=deposits,
            withdrawals=withdrawals,
            total_deposited=sum(d.deposit_amount for d in deposits),
            total_shares_minted=sum(d.shares_minted for d in deposits),
            total_lp_requested=sum(w.requested_lp_amount for w in withdrawals),
            total_lp_burned=sum(w.lp_tokens_burned for w in withdrawals),
            total_withdrawn=sum(w.amount_processed for w in withdrawals),
            pending_lp=sum(w.remaining_lp for w in withdrawals),
        )
        return QueryResult.ok(summary)

    @envelope("get_all_deposits")
    async def get_all_deposits(self) -> QueryResult:
        """Per-provider deposit and withdrawal totals, largest depositor first."""
        deposits, withdrawals = await asyncio.gather(
            self._gateway.get_deposits(),
            self._gateway.get_withdrawal_requests(),
        )
        summaries: Dict[str, ProviderSummary] = defaultdict(lambda: ProviderSummary(provider=""))
        for deposit in deposits:
            entry = summaries[deposit.provider.lower()]
            entry.provider = entry.provider or deposit.provider
            entry.deposit_count += 1
            entry.total_deposited += deposit.deposit_amount
            entry.total_shares_minted += deposit.shares_minted
        for request in withdrawals:
            entry = summaries[request.provider.lower()]
            entry.provider = entry.provider or request.provider
            entry.withdrawal_count += 1
            entry.total_lp_requested += request.requested_lp_amount
            entry.total_lp_burned += request.lp_tokens_burned
            entry.total_withdrawn += request.amount_processed
        return QueryResult.ok(sorted(summaries.values(), key=lambda s: s.total_deposited, reverse=True))

    @envelope("get_all_withdrawals")
    async def get_all_withdrawals(self, status: Optional[str] = None) -> QueryResult:
        requests = await self._gateway.get_withdrawal_requests()
        if status:
            requests = [r for r in requests if r.status == status]
        return QueryResult.ok(requests)

    # ------------------------------------------------------------------
    # Tracker output
    # ------------------------------------------------------------------

    @envelope("update_pool_fees")
    async def update_pool_fees(
        self,
        latest_apr: float,
        fees_collected_30d: int,
        total_fees_collected: int,
    ) -> QueryResult:
        record = await self.load_pool()
        if record is None:
            return QueryResult.not_found("Liquidity pool not found")
        await self._gateway.update_pool_fees(
            record.pool_address,
            latest_apr=latest_apr,
            calculated_at=self._clock(),
            fees_collected_30d=fees_collected_30d,
            total_fees_collected=total_fees_collected,
        )
        return QueryResult.ok(True)

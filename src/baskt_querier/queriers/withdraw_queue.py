"""WithdrawQueueQuerier — FIFO withdrawal queue read from the ledger, joined with metadata.

The ledger keeps one account per queued request, addressed by its sequence
number. Processed requests are pruned, so the scan tolerates missing
indices between the pool's tail and head.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

import structlog

from baskt_querier.codec import ensure_utc, utcnow
from baskt_querier.entities import QueryResult, WithdrawQueueItem, WithdrawQueueStats
from baskt_querier.errors import LedgerAccountNotFound
from baskt_querier.gateway import MetadataGateway
from baskt_querier.ledger import LedgerPool, LedgerReader, LedgerWithdrawRequest
from baskt_querier.queriers.base import envelope, ledger_call
from baskt_querier.records import WithdrawalRequestRecord

logger = structlog.get_logger()


class WithdrawQueueQuerier:
    def __init__(
        self,
        gateway: MetadataGateway,
        ledger: LedgerReader,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._gateway = gateway
        self._ledger = ledger
        self._clock = clock

    async def _fetch(self, index: int) -> Optional[LedgerWithdrawRequest]:
        address = self._ledger.withdraw_request_address(index)
        try:
            return await ledger_call(self._ledger.get_withdraw_request(address), "Failed to read withdraw request")
        except LedgerAccountNotFound:
            logger.debug("withdraw_request_missing", index=index, address=address)
        except Exception as exc:
            logger.warning("withdraw_request_fetch_failed", index=index, address=address, error=str(exc))
        return None

    async def load_queue(self) -> Tuple[Optional[LedgerPool], List[WithdrawQueueItem]]:
        """Scan ``tail .. head-1`` and return the live requests in FIFO order."""
        pool = await ledger_call(self._ledger.get_liquidity_pool(), "Failed to read liquidity pool")
        if pool is None:
            return None, []
        indices = range(pool.withdraw_queue_tail, pool.withdraw_queue_head)
        fetched = await asyncio.gather(*(self._fetch(i) for i in indices))
        live = [(i, r) for i, r in zip(indices, fetched) if r is not None]
        if not live:
            return pool, []

        # Positions count from the first index that still exists on the ledger.
        actual_tail = live[0][0]
        records = await self._gateway.get_withdrawal_requests(request_ids=[r.request_id for _, r in live])
        metadata: Dict[int, WithdrawalRequestRecord] = {m.request_id: m for m in records}
        items = []
        for index, request in live:
            meta = metadata.get(request.request_id)
            items.append(
                WithdrawQueueItem(
                    request_id=request.request_id,
                    address=request.address,
                    provider=request.provider,
                    provider_token_account=request.provider_token_account,
                    requested_lp_amount=request.requested_lp_amount,
                    remaining_lp=request.remaining_lp,
                    requested_at=ensure_utc(request.requested_at),
                    queue_position=index - actual_tail + 1,
                    status=meta.status if meta is not None else "QUEUED",
                    amount_processed=meta.amount_processed if meta is not None else 0,
                    processing_history=meta.processing_history if meta is not None else [],
                )
            )
        logger.debug(
            "withdraw_queue_loaded",
            tail=pool.withdraw_queue_tail,
            head=pool.withdraw_queue_head,
            live=len(items),
        )
        return pool, items

    @envelope("get_withdraw_queue")
    async def get_withdraw_queue(self) -> QueryResult:
        _, items = await self.load_queue()
        return QueryResult.ok(items)

    @envelope("get_user_withdraw_queue_items")
    async def get_user_withdraw_queue_items(self, provider: str) -> QueryResult:
        _, items = await self.load_queue()
        return QueryResult.ok([i for i in items if i.provider.lower() == provider.lower()])

    @envelope("get_withdraw_queue_stats")
    async def get_withdraw_queue_stats(self, user_address: Optional[str] = None) -> QueryResult:
        pool, items = await self.load_queue()
        if pool is None:
            return QueryResult.not_found("Liquidity pool not found")

        period = pool.rate_limit_period_secs
        rate_per_hour = 3600 / period if period > 0 else 0.0
        stats = WithdrawQueueStats(
            total_items=len(items),
            total_pending_lp=sum(i.remaining_lp for i in items),
            queue_head=pool.withdraw_queue_head,
            queue_tail=pool.withdraw_queue_tail,
            processing_rate_per_hour=rate_per_hour,
            processing_interval_minutes=period / 60,
        )

        if user_address:
            wanted = user_address.lower()
            for item in items:
                if item.provider.lower() == wanted:
                    stats.user_queue_position = item.queue_position
                    break
            if stats.user_queue_position is not None and rate_per_hour > 0:
                stats.estimated_wait_minutes = stats.user_queue_position / rate_per_hour * 60

        last_reset = ensure_utc(pool.last_rate_limit_reset)
        if last_reset is not None and period > 0:
            window = timedelta(seconds=period)
            stats.is_processing_now = self._clock() - last_reset < window
            stats.next_processing_time = last_reset + window
        return QueryResult.ok(stats)

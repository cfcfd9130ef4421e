"""Persistence gateway over the metadata store.

CRUD helpers keyed by natural IDs. Everything that leaves this module is
a typed record from :mod:`baskt_querier.records`; rows never escape a
session.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Type, TypeVar

import structlog
from pydantic import BaseModel
from sqlalchemy import delete, func, select

from baskt_querier.database import Database
from baskt_querier.errors import ErrorCode, wrap_errors
from baskt_querier.models import (
    AccessCodeRow,
    AssetRow,
    BasktRow,
    DepositRow,
    FeeEventRow,
    OrderRow,
    PoolRow,
    PositionRow,
    WalletRow,
    WithdrawalRequestRow,
)
from baskt_querier.records import (
    AccessCodeRecord,
    AssetRecord,
    BasktRecord,
    DepositRecord,
    FeeEventRecord,
    OrderRecord,
    PartialClose,
    PoolRecord,
    PositionRecord,
    ProcessingEntry,
    WalletRecord,
    WithdrawalRequestRecord,
    derive_withdrawal_state,
)

logger = structlog.get_logger()

R = TypeVar("R", bound=BaseModel)

_METADATA = ErrorCode.METADATA_ERROR


def _row_values(record: BaseModel, json_fields: Iterable[str] = ()) -> Dict[str, Any]:
    """Dump a record into column values; JSON columns get their JSON-safe form."""
    values = record.model_dump()
    json_fields = set(json_fields)
    if json_fields:
        values.update(record.model_dump(mode="json", include=json_fields))
    return values


def _to_records(model: Type[R], rows: Iterable[Any]) -> List[R]:
    return [model.model_validate(row) for row in rows]


class MetadataGateway:
    """Find / create / update access to the metadata store."""

    def __init__(self, db: Database) -> None:
        self._db = db

    @property
    def db(self) -> Database:
        return self._db

    # ------------------------------------------------------------------
    # Assets
    # ------------------------------------------------------------------

    @wrap_errors(_METADATA, "Failed to read asset metadata")
    async def get_all_assets(self) -> List[AssetRecord]:
        async with self._db.session() as session:
            result = await session.execute(select(AssetRow).order_by(AssetRow.ticker))
            return _to_records(AssetRecord, result.scalars().all())

    @wrap_errors(_METADATA, "Failed to read asset metadata")
    async def get_asset(self, asset_address: str) -> Optional[AssetRecord]:
        async with self._db.session() as session:
            row = await session.get(AssetRow, asset_address)
            return AssetRecord.model_validate(row) if row is not None else None

    @wrap_errors(_METADATA, "Failed to read asset metadata")
    async def get_asset_by_ticker(self, ticker: str) -> Optional[AssetRecord]:
        async with self._db.session() as session:
            result = await session.execute(select(AssetRow).where(AssetRow.ticker == ticker))
            row = result.scalars().first()
            return AssetRecord.model_validate(row) if row is not None else None

    @wrap_errors(_METADATA, "Failed to read asset metadata")
    async def get_assets_by_addresses(self, addresses: Sequence[str]) -> List[AssetRecord]:
        if not addresses:
            return []
        async with self._db.session() as session:
            result = await session.execute(
                select(AssetRow).where(AssetRow.asset_address.in_(list(addresses)))
            )
            return _to_records(AssetRecord, result.scalars().all())

    @wrap_errors(_METADATA, "Failed to write asset metadata")
    async def upsert_asset(self, record: AssetRecord) -> AssetRecord:
        async with self._db.session() as session:
            await session.merge(AssetRow(**_row_values(record, ("price_config", "baskt_ids"))))
        logger.debug("asset_upserted", ticker=record.ticker, address=record.asset_address)
        return record

    @wrap_errors(_METADATA, "Failed to write asset metadata")
    async def delete_asset(self, asset_address: str) -> bool:
        async with self._db.session() as session:
            result = await session.execute(delete(AssetRow).where(AssetRow.asset_address == asset_address))
            return result.rowcount > 0

    # ------------------------------------------------------------------
    # Baskts
    # ------------------------------------------------------------------

    @wrap_errors(_METADATA, "Failed to read baskt metadata")
    async def get_all_baskts(self) -> List[BasktRecord]:
        async with self._db.session() as session:
            result = await session.execute(select(BasktRow).order_by(BasktRow.uid))
            return _to_records(BasktRecord, result.scalars().all())

    @wrap_errors(_METADATA, "Failed to read baskt metadata")
    async def get_baskt(self, baskt_id: str) -> Optional[BasktRecord]:
        async with self._db.session() as session:
            row = await session.get(BasktRow, baskt_id)
            return BasktRecord.model_validate(row) if row is not None else None

    @wrap_errors(_METADATA, "Failed to read baskt metadata")
    async def get_baskt_by_uid(self, uid: int) -> Optional[BasktRecord]:
        async with self._db.session() as session:
            result = await session.execute(select(BasktRow).where(BasktRow.uid == uid))
            row = result.scalars().first()
            return BasktRecord.model_validate(row) if row is not None else None

    @wrap_errors(_METADATA, "Failed to write baskt metadata")
    async def upsert_baskt(self, record: BasktRecord) -> BasktRecord:
        async with self._db.session() as session:
            await session.merge(BasktRow(**_row_values(record, ("assets",))))
        logger.debug("baskt_upserted", baskt_id=record.baskt_id, status=record.status)
        return record

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    @wrap_errors(_METADATA, "Failed to read order metadata")
    async def get_orders(
        self,
        baskt_id: Optional[str] = None,
        owner: Optional[str] = None,
        status: Optional[str] = None,
        action: Optional[str] = None,
    ) -> List[OrderRecord]:
        stmt = select(OrderRow)
        if baskt_id:
            stmt = stmt.where(OrderRow.baskt_id == baskt_id)
        if owner:
            stmt = stmt.where(func.lower(OrderRow.owner) == owner.lower())
        if status:
            stmt = stmt.where(OrderRow.status == status)
        if action:
            stmt = stmt.where(OrderRow.action == action)
        async with self._db.session() as session:
            result = await session.execute(stmt.order_by(OrderRow.order_id))
            return _to_records(OrderRecord, result.scalars().all())

    @wrap_errors(_METADATA, "Failed to read order metadata")
    async def get_order(self, order_pda: str) -> Optional[OrderRecord]:
        async with self._db.session() as session:
            result = await session.execute(
                select(OrderRow).where(func.lower(OrderRow.order_pda) == order_pda.lower())
            )
            row = result.scalars().first()
            return OrderRecord.model_validate(row) if row is not None else None

    @wrap_errors(_METADATA, "Failed to write order metadata")
    async def upsert_order(self, record: OrderRecord) -> OrderRecord:
        async with self._db.session() as session:
            await session.merge(OrderRow(**_row_values(record)))
        logger.debug("order_upserted", order_pda=record.order_pda, status=record.status)
        return record

    # ------------------------------------------------------------------
    # Positions
    # ------------------------------------------------------------------

    @wrap_errors(_METADATA, "Failed to read position metadata")
    async def get_positions(
        self,
        baskt_id: Optional[str] = None,
        owner: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[PositionRecord]:
        stmt = select(PositionRow)
        if baskt_id:
            stmt = stmt.where(PositionRow.baskt_id == baskt_id)
        if owner:
            stmt = stmt.where(func.lower(PositionRow.owner) == owner.lower())
        if status:
            stmt = stmt.where(PositionRow.status == status)
        async with self._db.session() as session:
            result = await session.execute(stmt.order_by(PositionRow.position_id))
            return _to_records(PositionRecord, result.scalars().all())

    @wrap_errors(_METADATA, "Failed to read position metadata")
    async def get_position(self, position_pda: str) -> Optional[PositionRecord]:
        async with self._db.session() as session:
            result = await session.execute(
                select(PositionRow).where(func.lower(PositionRow.position_pda) == position_pda.lower())
            )
            row = result.scalars().first()
            return PositionRecord.model_validate(row) if row is not None else None

    @wrap_errors(_METADATA, "Failed to write position metadata")
    async def upsert_position(self, record: PositionRecord) -> PositionRecord:
        async with self._db.session() as session:
            await session.merge(PositionRow(**_row_values(record, ("partial_close_history",))))
        logger.debug("position_upserted", position_pda=record.position_pda, status=record.status)
        return record

    @wrap_errors(_METADATA, "Failed to write position metadata")
    async def append_partial_close(self, position_pda: str, entry: PartialClose) -> Optional[PositionRecord]:
        """Append one partial close and shrink the remaining size, in one update.

        Entries whose ``tx`` is already in the history are ignored.
        """
        async with self._db.session() as session:
            result = await session.execute(
                select(PositionRow).where(func.lower(PositionRow.position_pda) == position_pda.lower())
            )
            row = result.scalars().first()
            if row is None:
                return None
            record = PositionRecord.model_validate(row)
            if any(existing.tx == entry.tx for existing in record.partial_close_history):
                return record
            remaining = record.remaining_size if record.remaining_size is not None else record.size
            updated = record.model_copy(
                update={
                    "partial_close_history": [*record.partial_close_history, entry],
                    "remaining_size": max(remaining - entry.size_closed, 0),
                }
            )
            values = _row_values(updated, ("partial_close_history",))
            row.partial_close_history = values["partial_close_history"]
            row.remaining_size = values["remaining_size"]
        logger.info("partial_close_appended", position_pda=position_pda, tx=entry.tx)
        return updated

    # ------------------------------------------------------------------
    # Access codes & wallets
    # ------------------------------------------------------------------

    @wrap_errors(_METADATA, "Failed to read access codes")
    async def get_access_code(self, code: str) -> Optional[AccessCodeRecord]:
        async with self._db.session() as session:
            row = await session.get(AccessCodeRow, code)
            return AccessCodeRecord.model_validate(row) if row is not None else None

    @wrap_errors(_METADATA, "Failed to read access codes")
    async def get_all_access_codes(self) -> List[AccessCodeRecord]:
        async with self._db.session() as session:
            result = await session.execute(select(AccessCodeRow).order_by(AccessCodeRow.created_at.desc()))
            return _to_records(AccessCodeRecord, result.scalars().all())

    @wrap_errors(_METADATA, "Failed to write access code")
    async def create_access_code(self, record: AccessCodeRecord) -> AccessCodeRecord:
        async with self._db.session() as session:
            session.add(AccessCodeRow(**_row_values(record)))
        logger.info("access_code_created", code=record.code)
        return record

    @wrap_errors(_METADATA, "Failed to write access code")
    async def mark_access_code_used(self, code: str, wallet_address: str, used_at: datetime) -> None:
        async with self._db.session() as session:
            row = await session.get(AccessCodeRow, code)
            if row is not None:
                row.is_used = True
                row.used_by = wallet_address
                row.used_at = used_at

    @wrap_errors(_METADATA, "Failed to delete access code")
    async def delete_access_code(self, code: str) -> bool:
        async with self._db.session() as session:
            result = await session.execute(delete(AccessCodeRow).where(AccessCodeRow.code == code))
            return result.rowcount > 0

    @wrap_errors(_METADATA, "Failed to read wallets")
    async def get_wallet(self, wallet_address: str) -> Optional[WalletRecord]:
        async with self._db.session() as session:
            row = await session.get(WalletRow, wallet_address.lower())
            return WalletRecord.model_validate(row) if row is not None else None

    @wrap_errors(_METADATA, "Failed to read wallets")
    async def get_authorized_wallets(self) -> List[WalletRecord]:
        async with self._db.session() as session:
            result = await session.execute(
                select(WalletRow).where(WalletRow.is_active.is_(True)).order_by(WalletRow.authorized_at.desc())
            )
            return _to_records(WalletRecord, result.scalars().all())

    @wrap_errors(_METADATA, "Failed to write wallet")
    async def create_wallet(self, record: WalletRecord) -> WalletRecord:
        record = record.model_copy(update={"wallet_address": record.wallet_address.lower()})
        async with self._db.session() as session:
            await session.merge(WalletRow(**_row_values(record)))
        logger.info("wallet_authorized", wallet=record.wallet_address)
        return record

    @wrap_errors(_METADATA, "Failed to write wallet")
    async def set_wallet_active(
        self, wallet_address: str, is_active: bool, at: Optional[datetime] = None
    ) -> bool:
        async with self._db.session() as session:
            row = await session.get(WalletRow, wallet_address.lower())
            if row is None:
                return False
            row.is_active = is_active
            if at is not None:
                row.last_login_at = at
        logger.info("wallet_access_changed", wallet=wallet_address.lower(), is_active=is_active)
        return True

    @wrap_errors(_METADATA, "Failed to write wallet")
    async def touch_wallet_login(self, wallet_address: str, at: datetime) -> None:
        async with self._db.session() as session:
            row = await session.get(WalletRow, wallet_address.lower())
            if row is not None:
                row.last_login_at = at

    # ------------------------------------------------------------------
    # Fee events
    # ------------------------------------------------------------------

    @wrap_errors(_METADATA, "Failed to read fee events")
    async def get_fee_event(self, event_id: str) -> Optional[FeeEventRecord]:
        async with self._db.session() as session:
            row = await session.get(FeeEventRow, event_id)
            return FeeEventRecord.model_validate(row) if row is not None else None

    @wrap_errors(_METADATA, "Failed to write fee event")
    async def create_fee_event(self, record: FeeEventRecord) -> bool:
        """Insert a fee event. Returns False when the event id already exists."""
        async with self._db.session() as session:
            if await session.get(FeeEventRow, record.event_id) is not None:
                return False
            session.add(FeeEventRow(**_row_values(record, ("payload",))))
        logger.debug("fee_event_created", event_id=record.event_id, event_type=record.event_type)
        return True

    @wrap_errors(_METADATA, "Failed to read fee events")
    async def find_fee_events(
        self,
        event_type: Optional[str] = None,
        owner: Optional[str] = None,
        baskt_id: Optional[str] = None,
        transaction_signature: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[FeeEventRecord]:
        """Fee events, newest first, narrowed by any combination of filters."""
        stmt = select(FeeEventRow)
        if event_type:
            stmt = stmt.where(FeeEventRow.event_type == event_type)
        if owner:
            stmt = stmt.where(func.lower(FeeEventRow.owner) == owner.lower())
        if baskt_id:
            stmt = stmt.where(FeeEventRow.baskt_id == baskt_id)
        if transaction_signature:
            stmt = stmt.where(FeeEventRow.transaction_signature == transaction_signature)
        if start is not None:
            stmt = stmt.where(FeeEventRow.timestamp >= start)
        if end is not None:
            stmt = stmt.where(FeeEventRow.timestamp <= end)
        stmt = stmt.order_by(FeeEventRow.timestamp.desc()).offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self._db.session() as session:
            result = await session.execute(stmt)
            return _to_records(FeeEventRecord, result.scalars().all())

    # ------------------------------------------------------------------
    # Liquidity pool & deposits
    # ------------------------------------------------------------------

    @wrap_errors(_METADATA, "Failed to read liquidity pool")
    async def get_pool(self, pool_address: str) -> Optional[PoolRecord]:
        async with self._db.session() as session:
            row = await session.get(PoolRow, pool_address)
            return PoolRecord.model_validate(row) if row is not None else None

    @wrap_errors(_METADATA, "Failed to write liquidity pool")
    async def upsert_pool(self, record: PoolRecord) -> PoolRecord:
        """Persist the ledger-mirrored pool fields, keeping tracker-owned fee fields."""
        async with self._db.session() as session:
            existing = await session.get(PoolRow, record.pool_address)
            values = _row_values(record)
            if existing is not None:
                for key in ("latest_apr", "last_apr_at", "fees_collected_30d", "total_fees_collected"):
                    values[key] = getattr(existing, key)
            await session.merge(PoolRow(**values))
        logger.debug("pool_upserted", pool=record.pool_address)
        return PoolRecord.model_validate(values)

    @wrap_errors(_METADATA, "Failed to write liquidity pool")
    async def update_pool_fees(
        self,
        pool_address: str,
        latest_apr: float,
        calculated_at: datetime,
        fees_collected_30d: int,
        total_fees_collected: int,
    ) -> bool:
        async with self._db.session() as session:
            row = await session.get(PoolRow, pool_address)
            if row is None:
                return False
            row.latest_apr = latest_apr
            row.last_apr_at = calculated_at
            row.fees_collected_30d = str(fees_collected_30d)
            row.total_fees_collected = str(total_fees_collected)
        return True

    @wrap_errors(_METADATA, "Failed to write deposit")
    async def create_deposit(self, record: DepositRecord) -> bool:
        async with self._db.session() as session:
            if await session.get(DepositRow, record.transaction_signature) is not None:
                return False
            session.add(DepositRow(**_row_values(record)))
        return True

    @wrap_errors(_METADATA, "Failed to read deposits")
    async def get_deposits(
        self,
        provider: Optional[str] = None,
        pool_address: Optional[str] = None,
    ) -> List[DepositRecord]:
        stmt = select(DepositRow)
        if provider:
            stmt = stmt.where(func.lower(DepositRow.provider) == provider.lower())
        if pool_address:
            stmt = stmt.where(DepositRow.pool_address == pool_address)
        async with self._db.session() as session:
            result = await session.execute(stmt.order_by(DepositRow.timestamp.desc()))
            return _to_records(DepositRecord, result.scalars().all())

    # ------------------------------------------------------------------
    # Withdrawal requests
    # ------------------------------------------------------------------

    @wrap_errors(_METADATA, "Failed to read withdrawal requests")
    async def get_withdrawal_request(self, request_id: int) -> Optional[WithdrawalRequestRecord]:
        async with self._db.session() as session:
            row = await session.get(WithdrawalRequestRow, request_id)
            return WithdrawalRequestRecord.model_validate(row) if row is not None else None

    @wrap_errors(_METADATA, "Failed to read withdrawal requests")
    async def get_withdrawal_requests(
        self,
        provider: Optional[str] = None,
        request_ids: Optional[Sequence[int]] = None,
    ) -> List[WithdrawalRequestRecord]:
        stmt = select(WithdrawalRequestRow)
        if provider:
            stmt = stmt.where(func.lower(WithdrawalRequestRow.provider) == provider.lower())
        if request_ids is not None:
            if not request_ids:
                return []
            stmt = stmt.where(WithdrawalRequestRow.request_id.in_(list(request_ids)))
        async with self._db.session() as session:
            result = await session.execute(stmt.order_by(WithdrawalRequestRow.request_id))
            return _to_records(WithdrawalRequestRecord, result.scalars().all())

    @wrap_errors(_METADATA, "Failed to write withdrawal request")
    async def create_withdrawal_request(self, record: WithdrawalRequestRecord) -> bool:
        async with self._db.session() as session:
            if await session.get(WithdrawalRequestRow, record.request_id) is not None:
                return False
            session.add(WithdrawalRequestRow(**_row_values(record, ("processing_history",))))
        logger.info("withdrawal_request_created", request_id=record.request_id, provider=record.provider)
        return True

    @wrap_errors(_METADATA, "Failed to write withdrawal request")
    async def append_withdrawal_processing(
        self, request_id: int, entry: ProcessingEntry
    ) -> Optional[WithdrawalRequestRecord]:
        """Append a processing entry and store the re-derived status in the same update.

        Re-appending an entry whose ``tx`` is already recorded is a no-op.
        """
        async with self._db.session() as session:
            row = await session.get(WithdrawalRequestRow, request_id)
            if row is None:
                return None
            record = WithdrawalRequestRecord.model_validate(row)
            if any(existing.tx == entry.tx for existing in record.processing_history):
                return record
            updated = WithdrawalRequestRecord.model_validate(
                {**record.model_dump(), "processing_history": [*record.processing_history, entry]}
            )
            values = _row_values(updated, ("processing_history",))
            row.processing_history = values["processing_history"]
            row.status = values["status"]
            row.remaining_lp = values["remaining_lp"]
        logger.info(
            "withdrawal_processing_appended",
            request_id=request_id,
            tx=entry.tx,
            status=updated.status,
        )
        return updated

    @wrap_errors(_METADATA, "Failed to write withdrawal request")
    async def sync_withdrawal_status(self, request_id: int) -> Optional[WithdrawalRequestRecord]:
        """Re-derive status and remaining LP from the history and persist them if they drifted."""
        async with self._db.session() as session:
            row = await session.get(WithdrawalRequestRow, request_id)
            if row is None:
                return None
            record = WithdrawalRequestRecord.model_validate(row)
            status, remaining = derive_withdrawal_state(record.requested_lp_amount, record.processing_history)
            if row.status != status.value or row.remaining_lp != str(remaining):
                logger.info(
                    "withdrawal_status_resynced",
                    request_id=request_id,
                    stored=row.status,
                    derived=status.value,
                )
                row.status = status.value
                row.remaining_lp = str(remaining)
            return record


"""AccessQuerier — invite codes and the wallets they authorize."""

from __future__ import annotations

import secrets
import string
from datetime import datetime, timedelta
from typing import Callable, Optional

import structlog

from baskt_querier.codec import utcnow
from baskt_querier.entities import QueryResult, WalletAccess
from baskt_querier.errors import ErrorCode
from baskt_querier.gateway import MetadataGateway
from baskt_querier.queriers.base import envelope
from baskt_querier.records import AccessCodeRecord, WalletRecord

logger = structlog.get_logger()

CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 8
DEFAULT_CODE_TTL = timedelta(days=30)


def generate_access_code(length: int = CODE_LENGTH) -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


class AccessQuerier:
    def __init__(self, gateway: MetadataGateway, clock: Callable[[], datetime] = utcnow) -> None:
        self._gateway = gateway
        self._clock = clock

    @envelope("check_wallet_access")
    async def check_wallet_access(self, wallet_address: str) -> QueryResult:
        wallet = await self._gateway.get_wallet(wallet_address)
        if wallet is None or not wallet.is_active:
            return QueryResult.ok(WalletAccess(has_access=False, message="Wallet not authorized"))
        now = self._clock()
        await self._gateway.touch_wallet_login(wallet_address, now)
        return QueryResult.ok(
            WalletAccess(
                has_access=True,
                message="Wallet is authorized",
                authorized_at=wallet.authorized_at,
                access_code_used=wallet.access_code_used,
                last_login_at=now,
            )
        )

    @envelope("get_authorized_wallets")
    async def get_authorized_wallets(self) -> QueryResult:
        return QueryResult.ok(await self._gateway.get_authorized_wallets())

    @envelope("get_all_access_codes")
    async def get_all_access_codes(self) -> QueryResult:
        return QueryResult.ok(await self._gateway.get_all_access_codes())

    @envelope("create_access_code")
    async def create_access_code(
        self,
        description: str = "",
        expires_in: timedelta = DEFAULT_CODE_TTL,
        created_by: Optional[str] = None,
        code: Optional[str] = None,
    ) -> QueryResult:
        code = (code or generate_access_code()).strip().upper()
        if await self._gateway.get_access_code(code) is not None:
            return QueryResult.fail("Access code already exists", ErrorCode.VALIDATION_ERROR, 409)
        now = self._clock()
        record = AccessCodeRecord(
            code=code,
            description=description,
            expires_at=now + expires_in,
            created_by=created_by,
            created_at=now,
        )
        return QueryResult.ok(await self._gateway.create_access_code(record))

    @envelope("use_access_code")
    async def use_access_code(self, code: str, wallet_address: str) -> QueryResult:
        """Redeem a code and authorize the wallet.

        Rejects unknown, used and expired codes, and wallets that are
        already authorized.
        """
        code = code.strip().upper()
        record = await self._gateway.get_access_code(code)
        if record is None:
            return QueryResult.not_found("Invalid access code")
        if record.is_used:
            return QueryResult.fail("Access code has already been used", ErrorCode.VALIDATION_ERROR, 403)
        now = self._clock()
        if record.expires_at is not None and now > record.expires_at:
            return QueryResult.fail("Access code has expired", ErrorCode.VALIDATION_ERROR, 403)
        existing = await self._gateway.get_wallet(wallet_address)
        if existing is not None and existing.is_active:
            return QueryResult.fail("Wallet is already authorized", ErrorCode.VALIDATION_ERROR, 403)

        await self._gateway.mark_access_code_used(code, wallet_address, now)
        wallet = await self._gateway.create_wallet(
            WalletRecord(
                wallet_address=wallet_address,
                access_code_used=code,
                authorized_at=now,
                last_login_at=now,
            )
        )
        logger.info("access_code_redeemed", code=code, wallet=wallet.wallet_address)
        return QueryResult.ok(wallet, message="Access code validated successfully")

    @envelope("revoke_wallet_access")
    async def revoke_wallet_access(self, wallet_address: str) -> QueryResult:
        if not await self._gateway.set_wallet_active(wallet_address, False):
            return QueryResult.not_found("Wallet not found in authorized list")
        return QueryResult.ok(True)

    @envelope("reactivate_wallet")
    async def reactivate_wallet(self, wallet_address: str) -> QueryResult:
        if not await self._gateway.set_wallet_active(wallet_address, True, at=self._clock()):
            return QueryResult.not_found("Wallet not found in authorized list")
        return QueryResult.ok(True)

    @envelope("delete_access_code")
    async def delete_access_code(self, code: str) -> QueryResult:
        if not await self._gateway.delete_access_code(code.strip().upper()):
            return QueryResult.not_found("Access code not found")
        return QueryResult.ok(True)

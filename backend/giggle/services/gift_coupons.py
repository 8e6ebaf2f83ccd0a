"""
Gift coupons: on-chain escrow contract + IPFS metadata + DB mirror.

The contract is the source of truth for validity; the ``gift_coupons`` table
mirrors it so users can list what they created and redeemed.
"""
from __future__ import annotations
import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
from web3 import Web3
from web3.exceptions import Web3Exception

from giggle.core.config import get_settings
from giggle.core.errors import (
    CollaboratorError, ExecutionError, InsufficientFunds, NotFoundError, ValidationError,
)
from giggle.core.logging import get_logger
from giggle.core.security import generate_coupon_code
from giggle.db import repo
from giggle.db.models import GiftCoupon, User
from giggle.services.amounts import format_amount, parse_amount
from giggle.services.wallet import ERC20_ABI, RECEIPT_TIMEOUT_SECONDS, ensure_user_wallet

logger = get_logger(__name__)
settings = get_settings()

COUPON_DECIMALS = 6
COUPON_TOKEN = "PYUSD"

GIFT_COUPON_ABI = [
    {"name": "createCoupon", "type": "function", "stateMutability": "nonpayable",
     "inputs": [{"name": "code", "type": "string"}, {"name": "token", "type": "address"},
                {"name": "amount", "type": "uint256"}, {"name": "metadataURI", "type": "string"},
                {"name": "expiresAt", "type": "uint256"}],
     "outputs": [{"name": "", "type": "uint256"}]},
    {"name": "redeemCoupon", "type": "function", "stateMutability": "nonpayable",
     "inputs": [{"name": "code", "type": "string"}], "outputs": []},
    {"name": "checkCoupon", "type": "function", "stateMutability": "view",
     "inputs": [{"name": "code", "type": "string"}],
     "outputs": [{"name": "exists", "type": "bool"}, {"name": "isValid", "type": "bool"},
                 {"name": "token", "type": "address"}, {"name": "amount", "type": "uint256"},
                 {"name": "metadataURI", "type": "string"}, {"name": "expiresAt", "type": "uint256"},
                 {"name": "creator", "type": "address"}]},
    {"name": "supportedTokens", "type": "function", "stateMutability": "view",
     "inputs": [{"name": "", "type": "address"}], "outputs": [{"name": "", "type": "bool"}]},
]


@dataclass
class ContractCoupon:
    """Raw ``checkCoupon`` view, amount already scaled to a decimal string."""
    exists: bool
    is_valid: bool
    amount: str
    metadata_uri: str
    expires_at: int            # unix seconds, 0 = never
    creator: str


@dataclass
class CouponInfo:
    exists: bool
    is_valid: bool
    amount: str = "0"
    token: str = ""
    metadata: dict = field(default_factory=dict)
    expires_at: Optional[datetime] = None
    creator: str = ""


class Web3GiftCouponContract:
    def __init__(self, rpc_url: str = None, contract_address: str = None, token_address: str = None):
        self.w3 = Web3(Web3.HTTPProvider(rpc_url or settings.RPC_URL))
        self.address = Web3.to_checksum_address(contract_address or settings.GIFT_COUPON_CONTRACT_ADDRESS)
        self.token_address = Web3.to_checksum_address(token_address or settings.PYUSD_ADDRESS)
        self.contract = self.w3.eth.contract(address=self.address, abi=GIFT_COUPON_ABI)
        self.token = self.w3.eth.contract(address=self.token_address, abi=ERC20_ABI)

    @staticmethod
    def _units(amount: str) -> int:
        return int(Decimal(amount) * (Decimal(10) ** COUPON_DECIMALS))

    def _send(self, signer, fn) -> str:
        tx = fn.build_transaction({
            "from": signer.address,
            "nonce": self.w3.eth.get_transaction_count(signer.address),
            "chainId": settings.CHAIN_ID,
        })
        signed = signer.sign_transaction(tx)
        tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
        receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=RECEIPT_TIMEOUT_SECONDS)
        if receipt["status"] != 1:
            raise ExecutionError(f"Coupon transaction reverted ({Web3.to_hex(tx_hash)})")
        return Web3.to_hex(tx_hash)

    def _create(self, signer, code: str, amount: str, metadata_uri: str, expires_at: int) -> str:
        units = self._units(amount)
        logger.info("[COUPON] approving %s units for %s", units, self.address)
        self._send(signer, self.token.functions.approve(self.address, units))
        return self._send(signer, self.contract.functions.createCoupon(
            code, self.token_address, units, metadata_uri, expires_at
        ))

    def _check(self, code: str) -> ContractCoupon:
        exists, is_valid, _token, units, uri, expires_at, creator = \
            self.contract.functions.checkCoupon(code).call()
        amount = Decimal(units) / (Decimal(10) ** COUPON_DECIMALS)
        return ContractCoupon(exists, is_valid, f"{amount:.2f}", uri, int(expires_at), creator)

    async def is_ready(self) -> bool:
        try:
            return bool(await asyncio.to_thread(
                self.contract.functions.supportedTokens(self.token_address).call
            ))
        except (Web3Exception, ValueError, OSError) as exc:
            logger.error("Gift coupon contract not reachable: %s", exc)
            return False

    async def create(self, signer, code: str, amount: str, metadata_uri: str, expires_at: int) -> str:
        try:
            return await asyncio.to_thread(self._create, signer, code, amount, metadata_uri, expires_at)
        except (Web3Exception, ValueError) as exc:
            raise ExecutionError(str(exc)) from exc

    async def redeem(self, signer, code: str) -> str:
        try:
            return await asyncio.to_thread(self._send, signer, self.contract.functions.redeemCoupon(code))
        except (Web3Exception, ValueError) as exc:
            raise ExecutionError(str(exc)) from exc

    async def check(self, code: str) -> ContractCoupon:
        try:
            return await asyncio.to_thread(self._check, code)
        except (Web3Exception, ValueError, OSError) as exc:
            raise CollaboratorError(f"Coupon lookup failed: {exc}") from exc


class GiftCouponService:
    def __init__(self, contract, ipfs, wallet):
        self.contract = contract
        self.ipfs = ipfs
        self.wallet = wallet

    async def is_configured(self) -> bool:
        if self.contract is None:
            return False
        return await self.contract.is_ready()

    async def create(self, session: AsyncSession, user: User, amount: str, token: str = COUPON_TOKEN,
                     message: Optional[str] = None, expiry_days: int = 0) -> tuple[GiftCoupon, str]:
        value = parse_amount(amount)
        if value is None:
            raise ValidationError(f"Invalid coupon amount: {amount}. Use a positive amount like 5.00.")
        amount = format_amount(value)

        handle = await ensure_user_wallet(session, self.wallet, user)
        balance = await self.wallet.get_balance(handle.address)
        if Decimal(balance) < value:
            raise InsufficientFunds(balance, amount, f"{value - Decimal(balance):.2f}")

        code = generate_coupon_code()
        now = datetime.now(timezone.utc)
        expires_at = now + timedelta(days=expiry_days) if expiry_days and expiry_days > 0 else None
        metadata = {
            "title": "Giggle Pay Gift Coupon",
            "description": f"${amount} {token} Gift",
            "amount": amount,
            "token": token,
            "message": message,
            "createdAt": now.isoformat(),
            "expiresAt": expires_at.isoformat() if expires_at else None,
        }
        try:
            metadata_uri = await self.ipfs.pin_metadata(metadata)
        except CollaboratorError as exc:
            # Metadata is cosmetic; the coupon itself lives on-chain.
            logger.warning("Coupon %s created without metadata: %s", code, exc)
            metadata_uri = ""

        tx_hash = await self.contract.create(
            handle.signer, code, amount, metadata_uri, int(expires_at.timestamp()) if expires_at else 0
        )
        coupon = await repo.save_coupon(
            session, code=code, creator_id=user.id, amount=amount, token=token,
            message=message, expires_at=expires_at, tx_hash=tx_hash,
        )
        await repo.log_audit(session, user.id, "coupon_created",
                             {"code": code, "amount": amount, "token": token, "tx_hash": tx_hash})
        logger.info("Coupon %s created by user %s", code, user.id)
        return coupon, tx_hash

    async def check(self, code: str) -> CouponInfo:
        raw = await self.contract.check(code.upper())
        if not raw.exists:
            return CouponInfo(exists=False, is_valid=False)
        try:
            metadata = await self.ipfs.fetch_metadata(raw.metadata_uri)
        except CollaboratorError as exc:
            logger.warning("Coupon metadata unavailable for %s: %s", code, exc)
            metadata = {}
        return CouponInfo(
            exists=True,
            is_valid=raw.is_valid,
            amount=raw.amount,
            token=COUPON_TOKEN,
            metadata=metadata,
            expires_at=datetime.fromtimestamp(raw.expires_at, tz=timezone.utc) if raw.expires_at else None,
            creator=raw.creator,
        )

    async def redeem(self, session: AsyncSession, user: User, code: str) -> tuple[CouponInfo, str]:
        code = code.upper()
        info = await self.check(code)
        if not info.exists:
            raise NotFoundError(f"Coupon code {code} not found", user_message="Coupon code not found.")
        if not info.is_valid:
            raise ValidationError("Coupon is not valid (already redeemed or expired).")

        handle = await ensure_user_wallet(session, self.wallet, user)
        mirror = await repo.get_coupon_by_code(session, code)
        own_by_chain = info.creator and info.creator.lower() == handle.address.lower()
        own_by_mirror = mirror is not None and mirror.creator_id == user.id
        if own_by_chain or own_by_mirror:
            raise ValidationError("You can't redeem a coupon you created.")

        tx_hash = await self.contract.redeem(handle.signer, code)
        if not await repo.mark_coupon_redeemed(session, code, user.id, tx_hash):
            logger.warning("Coupon %s redeemed on-chain but has no active mirror row", code)
        await repo.log_audit(session, user.id, "coupon_redeemed",
                             {"code": code, "amount": info.amount, "token": info.token, "tx_hash": tx_hash})
        logger.info("Coupon %s redeemed by user %s", code, user.id)
        return info, tx_hash

    async def list_for_user(self, session: AsyncSession, user_id: str) -> tuple[list[GiftCoupon], list[GiftCoupon]]:
        active = await repo.list_active_coupons(session, user_id)
        redeemed = await repo.list_redeemed_coupons(session, user_id)
        return active, redeemed


def build_coupon_contract():
    if settings.coupons_configured and settings.token_configured:
        return Web3GiftCouponContract()
    logger.info("Gift coupon contract not configured, coupons disabled")
    return None

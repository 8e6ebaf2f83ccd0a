"""
Wallet service.
- PYUSD_ADDRESS configured → live ERC-20 transfers on Sepolia via web3.py.
- Missing → simulator (in-memory balances, fake hashes, flow intact).

Keys are derived deterministically from ENCRYPTION_KEY and the phone number,
so the same phone always maps to the same address.
"""
from __future__ import annotations
import asyncio
import secrets
from dataclasses import dataclass
from decimal import Decimal, ROUND_DOWN
from typing import Any, Optional

from eth_account import Account
from web3 import Web3
from web3.exceptions import Web3Exception
from sqlalchemy.ext.asyncio import AsyncSession

from giggle.core.config import get_settings
from giggle.core.errors import ExecutionError
from giggle.core.logging import get_logger
from giggle.db import repo
from giggle.db.models import User
from giggle.services.phones import normalize_phone

logger = get_logger(__name__)
settings = get_settings()

ERC20_ABI = [
    {"name": "transfer", "type": "function", "stateMutability": "nonpayable",
     "inputs": [{"name": "to", "type": "address"}, {"name": "amount", "type": "uint256"}],
     "outputs": [{"name": "", "type": "bool"}]},
    {"name": "approve", "type": "function", "stateMutability": "nonpayable",
     "inputs": [{"name": "spender", "type": "address"}, {"name": "amount", "type": "uint256"}],
     "outputs": [{"name": "", "type": "bool"}]},
    {"name": "balanceOf", "type": "function", "stateMutability": "view",
     "inputs": [{"name": "account", "type": "address"}],
     "outputs": [{"name": "", "type": "uint256"}]},
    {"name": "decimals", "type": "function", "stateMutability": "view",
     "inputs": [], "outputs": [{"name": "", "type": "uint8"}]},
]

RECEIPT_TIMEOUT_SECONDS = 120


@dataclass
class WalletHandle:
    address: str
    signer: Any            # eth_account LocalAccount; never logged


@dataclass
class TransferResult:
    tx_hash: str
    block_number: Optional[int] = None
    gas_used: Optional[str] = None


def tx_explorer_url(tx_hash: str) -> str:
    return f"{settings.EXPLORER_URL.rstrip('/')}/tx/{tx_hash}"


def address_explorer_url(address: str) -> str:
    return f"{settings.EXPLORER_URL.rstrip('/')}/address/{address}"


def _wallet_phone(phone_number: str) -> str:
    return normalize_phone(phone_number) or phone_number.strip()


def derive_account(phone_number: str, secret: str = None):
    key = Web3.keccak(text=f"{secret or settings.ENCRYPTION_KEY}:{_wallet_phone(phone_number)}")
    return Account.from_key(key)


def _fmt_units(raw: int, decimals: int, places: str) -> str:
    value = Decimal(raw) / (Decimal(10) ** decimals)
    return str(value.quantize(Decimal(places), rounding=ROUND_DOWN))


class _BaseWallet:
    async def get_or_create_wallet(self, user_id: str, phone_number: str) -> WalletHandle:
        account = derive_account(phone_number)
        return WalletHandle(address=account.address, signer=account)

    async def has_gas(self, address: str) -> bool:
        return Decimal(await self.get_gas_balance(address)) >= Decimal(settings.MIN_GAS_BALANCE)

    @staticmethod
    def tx_explorer_url(tx_hash: str) -> str:
        return tx_explorer_url(tx_hash)

    @staticmethod
    def address_explorer_url(address: str) -> str:
        return address_explorer_url(address)


class Web3Wallet(_BaseWallet):
    def __init__(self, rpc_url: str = None, token_address: str = None):
        self.w3 = Web3(Web3.HTTPProvider(rpc_url or settings.RPC_URL))
        self.token = self.w3.eth.contract(
            address=Web3.to_checksum_address(token_address or settings.PYUSD_ADDRESS),
            abi=ERC20_ABI,
        )
        self._decimals: Optional[int] = None

    def _token_decimals(self) -> int:
        if self._decimals is None:
            self._decimals = self.token.functions.decimals().call()
        return self._decimals

    def _balance(self, address: str) -> str:
        raw = self.token.functions.balanceOf(Web3.to_checksum_address(address)).call()
        return _fmt_units(raw, self._token_decimals(), "0.01")

    def _gas_balance(self, address: str) -> str:
        wei = self.w3.eth.get_balance(Web3.to_checksum_address(address))
        return _fmt_units(wei, 18, "0.000001")

    async def get_balance(self, address: str) -> str:
        return await asyncio.to_thread(self._balance, address)

    async def get_gas_balance(self, address: str) -> str:
        return await asyncio.to_thread(self._gas_balance, address)

    def _transfer(self, signer, to_address: str, amount: str) -> TransferResult:
        units = int(Decimal(amount) * (Decimal(10) ** self._token_decimals()))
        tx = self.token.functions.transfer(Web3.to_checksum_address(to_address), units).build_transaction({
            "from": signer.address,
            "nonce": self.w3.eth.get_transaction_count(signer.address),
            "chainId": settings.CHAIN_ID,
        })
        signed = signer.sign_transaction(tx)
        tx_hash = self.w3.eth.send_raw_transaction(signed.raw_transaction)
        logger.info("[WEB3] transfer sent: %s", tx_hash.hex())
        receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=RECEIPT_TIMEOUT_SECONDS)
        if receipt["status"] != 1:
            raise ExecutionError(f"Transfer reverted on-chain ({tx_hash.hex()})")
        return TransferResult(
            tx_hash=Web3.to_hex(tx_hash),
            block_number=receipt["blockNumber"],
            gas_used=str(receipt["gasUsed"]),
        )

    async def transfer(self, signer, to_address: str, amount: str) -> TransferResult:
        try:
            return await asyncio.to_thread(self._transfer, signer, to_address, amount)
        except (Web3Exception, ValueError) as exc:
            logger.error("[WEB3] transfer failed: %s", exc)
            raise ExecutionError(str(exc)) from exc


class SimulatedWallet(_BaseWallet):
    """In-memory ledger keyed by address. Unfunded addresses hold zero."""

    def __init__(self, starting_balance: str = "0", starting_gas: str = "0"):
        self._balances: dict[str, Decimal] = {}
        self._gas: dict[str, Decimal] = {}
        self._starting_balance = Decimal(starting_balance)
        self._starting_gas = Decimal(starting_gas)
        self.transfers: list[tuple[str, str, str]] = []
        self.fail_next: Optional[str] = None

    def fund(self, address: str, pyusd: str = None, eth: str = None) -> None:
        if pyusd is not None:
            self._balances[address] = Decimal(pyusd)
        if eth is not None:
            self._gas[address] = Decimal(eth)

    async def get_balance(self, address: str) -> str:
        return f"{self._balances.get(address, self._starting_balance):.2f}"

    async def get_gas_balance(self, address: str) -> str:
        return f"{self._gas.get(address, self._starting_gas):.6f}"

    async def transfer(self, signer, to_address: str, amount: str) -> TransferResult:
        await asyncio.sleep(0)   # behave like a real round-trip
        if self.fail_next:
            reason, self.fail_next = self.fail_next, None
            raise ExecutionError(reason)
        value = Decimal(amount)
        balance = self._balances.get(signer.address, self._starting_balance)
        if balance < value:
            raise ExecutionError("transfer amount exceeds balance")
        self._balances[signer.address] = balance - value
        self._balances[to_address] = self._balances.get(to_address, self._starting_balance) + value
        self.transfers.append((signer.address, to_address, amount))
        tx_hash = "0x" + secrets.token_hex(32)
        logger.info("[SIM] transfer %s PYUSD %s -> %s hash=%s", amount, signer.address, to_address, tx_hash)
        return TransferResult(tx_hash=tx_hash, block_number=0, gas_used="0")


async def ensure_user_wallet(session: AsyncSession, wallet, user: User) -> WalletHandle:
    """Derive the user's wallet and persist its address the first time."""
    handle = await wallet.get_or_create_wallet(user.id, user.phone_number)
    if not user.wallet_address:
        await repo.set_wallet_address(session, user, handle.address)
        logger.info("Wallet %s assigned to user %s", handle.address, user.id)
    return handle


def build_wallet():
    if settings.token_configured:
        logger.info("Wallet: web3 (%s)", settings.CHAIN_NAME)
        return Web3Wallet()
    logger.info("PYUSD_ADDRESS not configured, using simulated wallet")
    return SimulatedWallet()

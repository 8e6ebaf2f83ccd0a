from __future__ import annotations
import secrets
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from giggle.db import repo
from giggle.db.models import Base
from giggle.services.conversation import ConversationRouter
from giggle.services.executor import ActionExecutor
from giggle.services.gift_coupons import ContractCoupon, GiftCouponService
from giggle.services.intent import IntentClassifier
from giggle.services.ipfs import PinataIPFS
from giggle.services.messaging import SimulatedMessenger
from giggle.services.onboarding import OnboardingSequencer
from giggle.services.pending_actions import MemoryPendingActionStore
from giggle.services.pin_guard import PinGuard
from giggle.services.wallet import SimulatedWallet

ALICE = "+14155550101"
BOB = "+14155550102"
CAROL = "+14155550103"


class FakeClock:
    def __init__(self):
        self.now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds: float):
        self.now += timedelta(seconds=seconds)


class FakeLLM:
    def __init__(self, reply: str = "", error: Exception = None):
        self.reply = reply
        self.error = error
        self.calls: list[str] = []

    async def complete(self, system_prompt: str, user_text: str) -> str:
        self.calls.append(user_text)
        if self.error:
            raise self.error
        return self.reply


class FakePriceFeed:
    async def get_price(self, pair: str) -> float:
        return 2500.0


class FakeCouponContract:
    """Escrow contract stand-in: coupons keyed by code."""

    def __init__(self, ready: bool = True):
        self.ready = ready
        self.coupons: dict[str, ContractCoupon] = {}

    async def is_ready(self) -> bool:
        return self.ready

    async def create(self, signer, code, amount, metadata_uri, expires_at):
        self.coupons[code] = ContractCoupon(True, True, amount, metadata_uri, expires_at, signer.address)
        return "0x" + secrets.token_hex(32)

    async def redeem(self, signer, code):
        self.coupons[code].is_valid = False
        return "0x" + secrets.token_hex(32)

    async def check(self, code):
        return self.coupons.get(code) or ContractCoupon(False, False, "0", "", 0, "")


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'giggle.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def pins():
    return PinGuard(iterations=1_000)


@pytest.fixture
def wallet():
    return SimulatedWallet(starting_gas="0.01")


@pytest.fixture
def messenger():
    return SimulatedMessenger()


@pytest.fixture
def store(clock):
    return MemoryPendingActionStore(ttl_seconds=300, clock=clock)


@pytest.fixture
def coupon_contract():
    return FakeCouponContract()


@pytest.fixture
def coupons(coupon_contract, wallet):
    return GiftCouponService(coupon_contract, PinataIPFS(jwt=""), wallet)


@pytest.fixture
def executor(wallet, messenger):
    return ActionExecutor(wallet, messenger)


@pytest.fixture
def llm():
    return FakeLLM(error=RuntimeError("no llm in tests"))


@pytest.fixture
def router(session_factory, store, llm, wallet, executor, coupons, pins):
    return ConversationRouter(
        session_factory=session_factory,
        store=store,
        classifier=IntentClassifier(llm),
        onboarding=OnboardingSequencer(wallet, pins),
        executor=executor,
        wallet=wallet,
        coupons=coupons,
        price_feed=FakePriceFeed(),
        pin_guard=pins,
    )


@pytest.fixture
def onboarded(session_factory, pins):
    """Create a fully onboarded user with PIN 1234."""

    async def _make(phone: str, pin: str = "1234"):
        async with session_factory() as s:
            user = await repo.get_or_create_user(s, phone)
            await repo.update_user(s, user.id, onboarding_completed=True, onboarding_step="completed",
                                   pin_hash=pins.hash(pin) if pin else None)
            return await repo.get_user(s, user.id)

    return _make


@pytest.fixture
def say(router):
    async def _say(phone: str, body: str) -> list[str]:
        return await router.handle_inbound_message(
            {"from": f"whatsapp:{phone}", "body": body, "message_id": "SM" + secrets.token_hex(4)}
        )

    return _say

"""
FastAPI application entrypoint.
"""
from __future__ import annotations
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from giggle.core.config import get_settings
from giggle.core.logging import setup_logging, get_logger
from giggle.db.repo import AsyncSessionLocal, init_db, _init_redis, get_redis
from giggle.api import whatsapp, status, audit, scheduled
from giggle.services.conversation import ConversationRouter
from giggle.services.executor import ActionExecutor
from giggle.services.gift_coupons import GiftCouponService, build_coupon_contract
from giggle.services.intent import IntentClassifier
from giggle.services.ipfs import PinataIPFS
from giggle.services.llm_client import build_llm_client
from giggle.services.messaging import build_messenger
from giggle.services.onboarding import OnboardingSequencer
from giggle.services.pending_actions import build_pending_store
from giggle.services.pin_guard import pin_guard
from giggle.services.price_feed import PythPriceFeed
from giggle.services.scheduler import GiggleScheduler
from giggle.services.wallet import build_wallet

settings = get_settings()
setup_logging(settings.DEBUG)
logger = get_logger(__name__)


def _service_modes() -> dict:
    return {
        "llm": "live" if settings.llm_configured else "rules",
        "wallet": "live" if settings.token_configured else "simulator",
        "messaging": "twilio" if settings.twilio_configured else "simulator",
        "coupons": "live" if settings.coupons_configured and settings.token_configured else "disabled",
        "ipfs": "pinata" if settings.pinata_configured else "mock",
        "pending_store": "redis" if get_redis() is not None else "memory",
    }


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown."""
    logger.info("Starting %s v%s", settings.APP_NAME, settings.VERSION)
    await init_db()
    await _init_redis()

    wallet = build_wallet()
    messenger = build_messenger()
    store = build_pending_store(get_redis())
    executor = ActionExecutor(wallet, messenger)
    coupons = GiftCouponService(build_coupon_contract(), PinataIPFS(), wallet)
    app.state.router = ConversationRouter(
        session_factory=AsyncSessionLocal,
        store=store,
        classifier=IntentClassifier(build_llm_client()),
        onboarding=OnboardingSequencer(wallet, pin_guard),
        executor=executor,
        wallet=wallet,
        coupons=coupons,
        price_feed=PythPriceFeed(),
        pin_guard=pin_guard,
    )
    app.state.scheduler = GiggleScheduler(AsyncSessionLocal, store, messenger)
    app.state.scheduler.start()
    logger.info("Services: %s", _service_modes())
    yield
    app.state.scheduler.shutdown()
    await app.state.router.drain()
    logger.info("Shutting down.")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    description="WhatsApp PYUSD payment assistant — PIN-gated sends, requests and gift coupons.",
    lifespan=lifespan,
)

# CORS: localhost dashboards
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:3000",
        "http://127.0.0.1:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(whatsapp.router, tags=["WhatsApp"])
app.include_router(status.router, tags=["WhatsApp"])
app.include_router(audit.router, tags=["Audit"])
app.include_router(scheduled.router, tags=["Scheduled"])


@app.get("/health", tags=["System"])
async def health():
    return {
        "status": "ok",
        "version": settings.VERSION,
        "network": settings.CHAIN_NAME,
        "services": _service_modes(),
    }

"""
Plateful Checkout - Application Entry Point
=============================================
FastAPI app initialization, error rendering, scheduler and router registration.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from apscheduler.schedulers.background import BackgroundScheduler

from config import settings
from config.database import SessionLocal, Base, engine
from common.exceptions import PlatefulError, RateLimitError

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
scheduler_logger = logging.getLogger("plateful.scheduler")


# ==========================================
# Import ALL models so Alembic/Base can see them
# ==========================================
from modules.catalog.models import MenuItem, ModifierGroup, Modifier, ModifierRule  # noqa: F401,E402
from modules.promo.models import Promotion, PromoRedemption  # noqa: F401,E402
from modules.credit.models import UserCredit  # noqa: F401,E402
from modules.checkout.models import PendingCart, CheckoutSession, CheckoutRateLimit  # noqa: F401,E402

# ==========================================
# Import routers
# ==========================================
from modules.checkout.routes import router as checkout_router  # noqa: E402
from modules.promo.routes import router as promo_router  # noqa: E402
from modules.credit.routes import router as credit_router  # noqa: E402
from modules.payment.routes import router as payment_router  # noqa: E402


# ==========================================
# Background Scheduler: Abandoned Checkout Cleanup
# ==========================================
def _expire_stale_sessions():
    """Background job: expire open sessions past expires_at and release their reservations."""
    db = SessionLocal()
    try:
        from modules.checkout.service import checkout_service
        checkout_service.expire_stale_sessions(db)
    except Exception as e:
        db.rollback()
        scheduler_logger.error(f"Session expiry error: {e}")
    finally:
        db.close()


def _purge_pending_carts():
    """Background job: delete unpaid pending carts older than the retention window."""
    db = SessionLocal()
    try:
        from modules.checkout.service import checkout_service
        checkout_service.purge_pending_carts(db)
    except Exception as e:
        db.rollback()
        scheduler_logger.error(f"Pending cart cleanup error: {e}")
    finally:
        db.close()


scheduler = BackgroundScheduler()


@asynccontextmanager
async def lifespan(app):
    # Auto-create any missing tables (safe for existing tables)
    Base.metadata.create_all(bind=engine)

    scheduler.add_job(_expire_stale_sessions, 'interval', seconds=60, id='expire_sessions')
    scheduler.add_job(_purge_pending_carts, 'interval', hours=1, id='purge_pending_carts')
    scheduler.start()
    scheduler_logger.info("Background scheduler started (sessions: 60s, pending carts: 1h)")
    yield
    scheduler.shutdown()
    scheduler_logger.info("Background scheduler stopped")


# ==========================================
# Create App
# ==========================================
app = FastAPI(
    title="Plateful Checkout",
    description="Server-side checkout and discount pipeline",
    version="1.0.0",
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url=None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Authorization", "Content-Type", "X-Idempotency-Key"],
)


# ==========================================
# Exception handler: business errors -> JSON
# ==========================================
async def plateful_exception_handler(request: Request, exc: PlatefulError):
    headers = {}
    if isinstance(exc, RateLimitError):
        headers["Retry-After"] = str(exc.retry_after)
    return JSONResponse(exc.to_dict(), status_code=exc.status_code, headers=headers)


app.add_exception_handler(PlatefulError, plateful_exception_handler)


# ==========================================
# Register Routers
# ==========================================
app.include_router(checkout_router)
app.include_router(promo_router)
app.include_router(credit_router)
app.include_router(payment_router)


# ==========================================
# Health check
# ==========================================
@app.get("/health")
async def health():
    return {"status": "ok", "version": "1.0.0"}

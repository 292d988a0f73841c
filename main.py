"""
Homestay Booking Payments - Application Entry Point
=====================================================
FastAPI app initialization, exception handling, background jobs, router registration.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from apscheduler.schedulers.background import BackgroundScheduler

from config import settings
from config.database import SessionLocal, Base, engine
from common.exceptions import BookingSystemError, http_status_for

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
scheduler_logger = logging.getLogger("homestay.scheduler")

# ==========================================
# Import ALL models so Alembic/Base can see them
# ==========================================
from modules.user.models import User  # noqa: F401,E402
from modules.booking.models import Homestay, Booking  # noqa: F401,E402
from modules.payment.models import Payment  # noqa: F401,E402

# ==========================================
# Import routers
# ==========================================
from modules.payment.routes import router as payment_router  # noqa: E402


# ==========================================
# Background Scheduler: Stale Payment Expiry
# ==========================================
def _expire_stale_payments():
    """Background job: fail online payments the gateway has already timed out (every 60 seconds)."""
    db = SessionLocal()
    try:
        from modules.payment.service import payment_service
        count = payment_service.expire_stale_payments(db)
        if count:
            db.commit()
            scheduler_logger.info(f"Expired {count} stale online payments")
    except Exception as e:
        db.rollback()
        scheduler_logger.error(f"Payment expiry error: {e}")
    finally:
        db.close()


scheduler = BackgroundScheduler()


@asynccontextmanager
async def lifespan(app):
    # Auto-create any missing tables (safe for existing tables)
    Base.metadata.create_all(bind=engine)

    scheduler.add_job(_expire_stale_payments, "interval", seconds=60, id="expire_payments")
    scheduler.start()
    scheduler_logger.info("Background scheduler started (payment expiry: 60s)")
    yield
    scheduler.shutdown()
    scheduler_logger.info("Background scheduler stopped")


# ==========================================
# Create App
# ==========================================
app = FastAPI(
    title="Homestay Booking Payments",
    description="Thanh toán đặt phòng homestay (VNPay, Momo, tiền mặt)",
    version="1.0.0",
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url=None,
    lifespan=lifespan,
)


# ==========================================
# Exception handler: business errors → JSON envelope
# ==========================================
async def business_exception_handler(request: Request, exc: BookingSystemError):
    return JSONResponse(
        {"success": False, "message": exc.message, "data": None},
        status_code=http_status_for(exc),
    )


app.add_exception_handler(BookingSystemError, business_exception_handler)


# ==========================================
# Register Routers
# ==========================================
app.include_router(payment_router)


# ==========================================
# Health check
# ==========================================
@app.get("/health")
async def health():
    return {"status": "ok", "version": "1.0.0"}

"""
FreshFarmily Referral Backend Server
FastAPI application entry point
"""
import logging
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager

# Import settings
from config.settings import settings

# Import database
from database.base import engine, Base
import modules  # noqa: F401  registers all models on Base.metadata

from shared.exceptions import AppException
from shared.schemas import ErrorResponse

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.DEBUG else logging.WARNING,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


# Lifespan context manager for startup/shutdown events
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("🚀 Starting FreshFarmily Referral Server...")
    logger.info(f"🔧 Debug Mode: {settings.DEBUG}")
    logger.info(
        f"🎁 Referral limits: {settings.MAX_LIFETIME_FREE_DELIVERIES} free deliveries, "
        f"${settings.MAX_LIFETIME_CASHBACK} cashback"
    )

    # Create all tables
    try:
        Base.metadata.create_all(bind=engine)
        logger.info("✅ Database tables created/verified successfully")
    except Exception as e:
        logger.error(f"❌ Database initialization error: {e}")

    yield

    # Shutdown
    logger.info("👋 Shutting down FreshFarmily Referral Server...")


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    debug=settings.DEBUG,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AppException)
async def app_exception_handler(request: Request, exc: AppException):
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(detail=exc.detail, error_code=exc.error_code).model_dump(),
    )


# Health check endpoint
@app.get("/")
async def root():
    return {
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running"
    }


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


# Routers
from modules.referrals.routes import router as referrals_router  # noqa: E402
from modules.orders.routes import router as orders_router  # noqa: E402

app.include_router(referrals_router, prefix=f"{settings.API_V1_PREFIX}/referrals", tags=["Referrals"])
app.include_router(orders_router, prefix=f"{settings.API_V1_PREFIX}/orders", tags=["Orders"])
logger.info("✅ Referral and order routes loaded successfully")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("server:app", host="0.0.0.0", port=8082, reload=settings.DEBUG)

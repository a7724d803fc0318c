from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn
from contextlib import asynccontextmanager
import logging
from datetime import datetime, timezone

from core.config import settings
from core.factory import ServiceFactory
from core.middleware import setup_exception_handlers
from core.responses import success_response

from routers import admin_router, payment_router, webhook_router

# Logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

ServiceFactory.configure_dependencies()

store = ServiceFactory.get_store()
webhook_service = ServiceFactory.get_webhook_service()
payment_service = ServiceFactory.get_payment_service()

db_connected = False


@asynccontextmanager
async def lifespan(_app: FastAPI):
    global db_connected

    # no DB health check; the startup audit row doubles as one
    db_connected = await store.log_system_event(
        event_type='server_start',
        event_data={'status': 'success', 'environment': settings.ENVIRONMENT,
                    'timestamp': datetime.now(timezone.utc).isoformat()}
    )
    if not db_connected:
        logger.error("startup log could not be written; Supabase may be unreachable")

    yield

    if db_connected:
        await store.log_system_event(
            event_type='server_stop',
            event_data={'status': 'success', 'timestamp': datetime.now(timezone.utc).isoformat()}
        )

app = FastAPI(
    title="iArtigo Billing Webhook Server",
    description="Hotmart and Green payment webhooks, checkout registration and payment administration",
    version="1.0.0",
    lifespan=lifespan,
    debug=settings.DEBUG
)

setup_exception_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

webhook_router.set_dependencies(webhook_service)
payment_router.set_dependencies(payment_service)
admin_router.set_dependencies(payment_service, webhook_service, settings.ADMIN_API_TOKEN)

@app.get("/")
async def root():
    return success_response(
        data={"message": "iArtigo billing webhook server"},
        message="Server is running"
    )

@app.get("/health")
async def health_check():
    return success_response(
        data={
            "database": {"checked": False, "startup_log_written": db_connected},
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": "1.0.0",
            "environment": settings.ENVIRONMENT
        },
        message="Health check (database not checked)"
    )

app.include_router(webhook_router.router)
app.include_router(payment_router.router)
app.include_router(admin_router.router)

if __name__ == "__main__":
    uvicorn.run(
        app,
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
        reload=settings.DEBUG
    )

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .auth import router as auth_router
from .catalog import router as catalog_router
from .core.config import get_settings
from .core.db import Base, engine
from .core.responses import FunctionError, function_error_handler
from .feedback import public_router as feedback_public_router
from .feedback import router as feedback_router
from .functions import router as functions_router
from .notifications import router as notifications_router
from .public import host_router as storefront_host_router
from .public import router as storefront_router
from .store_settings import router as store_settings_router


settings = get_settings()
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
app = FastAPI(title="Storefront Builder Backend")
logger = logging.getLogger(__name__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(FunctionError, function_error_handler)

# Owner
app.include_router(auth_router)
app.include_router(store_settings_router)
app.include_router(catalog_router)
app.include_router(feedback_router)
app.include_router(notifications_router)

# Public storefront
app.include_router(storefront_router)
app.include_router(feedback_public_router)
app.include_router(storefront_host_router)

# Remote functions
app.include_router(functions_router)


@app.on_event("startup")
async def on_startup():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"🚀 Storefront backend ready (platform domain: {settings.platform_domain})")


@app.get("/health")
async def healthcheck():
    return {"ok": True}

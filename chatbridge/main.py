from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chatbridge.config import get_settings
from chatbridge.database import engine
from chatbridge.logging_config import get_logger, setup_logging
from chatbridge.routers import admin, chat, telegram_webhook
from chatbridge.services.schema_migration import ensure_schema

settings = get_settings()
setup_logging(settings.log_level)

logger = get_logger("main")

app = FastAPI(
    title="Chatbridge API",
    description="Routes website chat between visitors, automation and a Telegram operator",
    version="0.1.0",
)

cors_origins = [origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()]
if not cors_origins:
    cors_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(chat.router)
app.include_router(telegram_webhook.router)
app.include_router(admin.router)


@app.on_event("startup")
def prepare_database() -> None:
    added = ensure_schema(engine)
    logger.info("Database ready", extra={"context": {"event": "startup", "columns_added": added}})


@app.get("/health")
async def health():
    return {"status": "ok"}

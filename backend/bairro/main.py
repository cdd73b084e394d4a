import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.trustedhost import TrustedHostMiddleware

from bairro.config import DOCUMENT_STORE_BACKEND, LOG_LEVEL, parse_csv_env
from bairro.routers import conversations, notifications, preferences, providers, reviews, sessions
from bairro.services.sessions import session_registry

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    session_registry.close_all()
    logger.info("Closed all sessions")


app = FastAPI(title="Bairro API", version="0.1.0", lifespan=lifespan)

cors_origins = parse_csv_env("CORS_ORIGINS", "*")
allow_any_origin = len(cors_origins) == 1 and cors_origins[0] == "*"

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    # Browsers reject wildcard CORS with credentials enabled.
    allow_credentials=not allow_any_origin,
    allow_methods=["*"],
    allow_headers=["*"],
)

trusted_hosts = parse_csv_env("TRUSTED_HOSTS", "*")
if not (len(trusted_hosts) == 1 and trusted_hosts[0] == "*"):
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=trusted_hosts)

app.include_router(sessions.router)
app.include_router(preferences.router)
app.include_router(providers.router)
app.include_router(conversations.router)
app.include_router(notifications.router)
app.include_router(reviews.router)


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/ready")
def ready():
    return {
        "status": "ready",
        "document_store": DOCUMENT_STORE_BACKEND,
    }

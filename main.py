import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sendersync import config
from sendersync.api.v1.api import api_router
from sendersync.database import engine, Base
from sendersync.models import User, Connection, SyncedMessage, Address, FilteredDomain  # noqa: F401

logging.basicConfig(level=config.LOG_LEVEL, format=config.LOG_FORMAT)
logger = logging.getLogger("sendersync")

app = FastAPI(
    title="Sender Sync",
    description="Harvest sender addresses from a Gmail folder into a Google Sheet",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def on_startup():
    """Create database tables on startup."""
    Base.metadata.create_all(bind=engine)
    logger.info("✅ Database tables created/verified")


app.include_router(api_router)


@app.get("/")
def health_check():
    return {"status": "ok"}

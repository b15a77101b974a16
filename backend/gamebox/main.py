import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from .config import get_settings
from .database import create_schema, engine
from .routers import admin, reservations
from .utils.request_id import request_id_middleware

logging.basicConfig(level=get_settings().log_level.upper())
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    if get_settings().create_schema_on_startup:
        logger.info("creating database schema")
        await create_schema(engine)
    yield
    await engine.dispose()


app = FastAPI(title="Gamebox Reservation API", lifespan=lifespan)
app.middleware("http")(request_id_middleware)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


app.include_router(reservations.router)
app.include_router(admin.router)

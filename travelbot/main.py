import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlalchemy import text

from travelbot.api.v1.admin import router as admin_router
from travelbot.api.v1.entities import router as entities_router
from travelbot.api.v1.recommend import router as recommend_router
from travelbot.api.v1.users import router as users_router
from travelbot.core.config import settings
from travelbot.db.session import engine

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with engine.begin() as conn:
        await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
    yield
    await engine.dispose()


app = FastAPI(
    title="TravelBot API",
    version="0.1.0",
    description="Retrieval and ranking backend for TravelBot travel recommendations.",
    lifespan=lifespan,
)

app.include_router(recommend_router, prefix="/api/v1")
app.include_router(users_router,     prefix="/api/v1")
app.include_router(entities_router,  prefix="/api/v1")
app.include_router(admin_router,     prefix="/api/v1")


@app.get("/health", tags=["meta"])
async def health_check():
    return {"status": "ok", "version": app.version}

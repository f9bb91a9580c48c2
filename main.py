import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from core.db import mongo_manager
from core.dependencies import env, get_broker, get_cache, get_worker_service, reset_broker
from core.indexes import ensure_indexes
from core.logging_config import setup_logging
from core.settings import settings
from core.websocket import manager
from routes.admin import AdminRoutes
from routes.callbacks import CallbackRoutes
from routes.chat import ChatRoutes
from routes.customers import CustomerRoutes
from routes.ratings import RatingRoutes
from routes.uploads import UploadRoutes
from routes.workers import WorkerRoutes
from routes.ws import WebSocketRoutes

setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


async def sweep_presence(interval: float) -> None:
    """Expires idle customers and sessions nobody joined."""
    broker = get_broker()
    while True:
        await asyncio.sleep(interval)
        manager.publish(await broker.disconnects.sweep())


@asynccontextmanager
async def lifespan(app: FastAPI):
    await mongo_manager.connect()
    db = mongo_manager.get_db()
    await ensure_indexes(db)
    if not await get_cache().ensure():
        logger.warning("Redis unavailable; worker logins will fail until it is reachable")

    broker = get_broker()
    # Presence is single-process: nothing survives a restart.
    await broker.worker_repo.reset_all_offline()
    abandoned = await broker.session_repo.abandon_live_sessions()
    if abandoned:
        logger.info("Abandoned %d sessions left live by a previous run", abandoned)
    if env.SEED_DEFAULT_WORKERS:
        created = await get_worker_service().seed_defaults()
        if created:
            logger.info("Seeded %d default workers", created)

    manager.start()
    sweeper = asyncio.create_task(sweep_presence(env.PRESENCE_SWEEP_SECONDS))
    logger.info("%s started on %s:%s", settings.APP_NAME, settings.HOST, settings.PORT)
    try:
        yield
    finally:
        sweeper.cancel()
        try:
            await sweeper
        except asyncio.CancelledError:
            pass
        await manager.stop()
        await get_cache().close()
        await mongo_manager.disconnect()
        reset_broker()


app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[env.CORS_ORIGIN],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

for routes in (CustomerRoutes(), WorkerRoutes(), AdminRoutes(), CallbackRoutes(),
               RatingRoutes(), UploadRoutes(), ChatRoutes(), WebSocketRoutes()):
    app.include_router(routes.router)


@app.get("/health")
async def health():
    database = await mongo_manager.ping()
    return {"status": "ok" if database else "degraded", "service": settings.APP_NAME, "database": database}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host=settings.HOST, port=settings.PORT, log_level=settings.LOG_LEVEL.lower())

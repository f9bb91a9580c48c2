from functools import lru_cache

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from motor.motor_asyncio import AsyncIOMotorCollection

from core.db import mongo_manager
from core.environment import get_environment
from core.settings import settings
from core.websocket import manager
from domain.errors import AuthError
from infrastructure.storage.r2 import R2Service
from repositories.callback import CallbackRepository
from repositories.message import MessageRepository
from repositories.rating import RatingRepository
from repositories.session import SessionRepository
from repositories.worker import WorkerRepository
from services.broker import SessionBroker
from services.callback_service import CallbackService
from services.notification import Notifier
from services.rating_service import RatingService
from services.worker_service import WorkerService
from utils.cache import Cache
from utils.security import Security

env = get_environment()

_broker: SessionBroker | None = None


def get_db_collection(collection_name: str) -> AsyncIOMotorCollection:
    """Collection from the connected Mongo client."""
    db = mongo_manager.get_db(db_name=env.DATABASE_NAME)
    return db[collection_name]


@lru_cache
def get_cache() -> Cache:
    return Cache(env.REDIS_URL)


@lru_cache
def get_notifier() -> Notifier:
    return Notifier(env.NOTIFY_WEBHOOK_URL, timeout=settings.REQUEST_TIMEOUT)


def get_security() -> Security:
    return Security(get_cache())


def get_worker_repository() -> WorkerRepository:
    return WorkerRepository(get_db_collection("workers"))


def get_session_repository() -> SessionRepository:
    return SessionRepository(get_db_collection("sessions"))


def get_message_repository() -> MessageRepository:
    return MessageRepository(get_db_collection("messages"))


def get_callback_repository() -> CallbackRepository:
    return CallbackRepository(get_db_collection("callbacks"))


def get_rating_repository() -> RatingRepository:
    return RatingRepository(get_db_collection("ratings"))


def get_broker() -> SessionBroker:
    """The process-wide broker; built on first use, after Mongo connects."""
    global _broker
    if _broker is None:
        _broker = SessionBroker(
            get_worker_repository(),
            get_session_repository(),
            get_message_repository(),
            publish=manager.publish,
            env=env,
            notifier=get_notifier(),
        )
    return _broker


def reset_broker() -> None:
    global _broker
    _broker = None


def get_worker_service() -> WorkerService:
    broker = get_broker()
    return WorkerService(broker.worker_repo, get_security(), broker.presence)


def get_callback_service() -> CallbackService:
    broker = get_broker()
    return CallbackService(get_callback_repository(), broker.presence, broker.publish, broker.notifier)


def get_rating_service() -> RatingService:
    broker = get_broker()
    return RatingService(get_rating_repository(), broker.presence, broker.publish, broker.notifier)


@lru_cache
def get_blob_store() -> R2Service:
    return R2Service(
        account_id=env.R2_ACCOUNT_ID,
        access_key=env.R2_ACCESS_KEY,
        secret_key=env.R2_SECRET_KEY,
        bucket_name=env.R2_BUCKET_NAME,
        public_url=env.R2_PUBLIC_URL,
    )


# HTTP auth

bearer_scheme = HTTPBearer()


async def get_current_worker(
    token_auth: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    security: Security = Depends(get_security),
) -> dict:
    """Decoded token of the calling worker; 401 when it is not valid."""
    try:
        return await security.verify_token(token_auth.credentials)
    except AuthError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )


def require_admin_key(
    x_admin_key: str = Header(default=None),
    security: Security = Depends(get_security),
) -> None:
    if not security.verify_admin_key(x_admin_key):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid admin key")

import logging
from datetime import datetime, timezone

from jose import jwt, JWTError

from core.environment import get_environment
from domain.errors import AuthError

logger = logging.getLogger(__name__)


class Security():
    """Issues and verifies worker access tokens.

    A token is only valid while its copy sits in the cache whitelist, so
    logout revokes it before it expires.
    """

    def __init__(self, cache):
        self._env = get_environment()
        self._cache = cache

    async def create_token(self, worker: dict) -> str:
        now = datetime.now(timezone.utc).timestamp()
        payload = {
            "sub": worker["username"],
            "_id": str(worker["_id"]),
            "type": "access",
            "iat": int(now),
            "exp": int(now) + int(self._env.ACCESS_TOKEN_EXPIRE_SECONDS),
        }
        token = jwt.encode(payload, self._env.SECRET_KEY, algorithm=self._env.ALGORITHM)
        await self._cache.set(f"auth_token:{payload['_id']}", token, ttl_s=self._env.ACCESS_TOKEN_EXPIRE_SECONDS)
        return token

    async def verify_token(self, token: str) -> dict:
        try:
            # Checks signature and exp
            decoded = jwt.decode(token, self._env.SECRET_KEY, algorithms=[self._env.ALGORITHM])
        except JWTError as e:
            logger.info("Invalid token: %s", e)
            raise AuthError("Invalid token") from e

        worker_id = decoded.get("_id")
        if not worker_id:
            raise AuthError("Token missing worker identifier")

        stored = await self._cache.get(f"auth_token:{worker_id}")
        if stored != token:
            raise AuthError("Session is no longer valid")
        return decoded

    async def revoke(self, worker_id: str) -> None:
        await self._cache.delete(f"auth_token:{worker_id}")

    def verify_admin_key(self, admin_key: str) -> bool:
        return bool(admin_key) and admin_key == self._env.ADMIN_KEY

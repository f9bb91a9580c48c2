import pytest

from domain.errors import AuthError, ConflictError
from services.worker_service import DEFAULT_WORKERS, WorkerService


@pytest.fixture
def service(broker, security):
    return WorkerService(broker.worker_repo, security, broker.presence)


class TestRegister:
    async def test_password_is_stored_hashed(self, service, worker_repo):
        worker = await service.register("carol", "secret1")

        stored = worker_repo.docs[worker["id"]]
        assert stored["password"].startswith("$2")
        assert "password" not in worker

    @pytest.mark.parametrize("username,password", [("ab", "secret1"), ("carol", "12345")])
    async def test_rejects_short_credentials(self, service, username, password):
        with pytest.raises(ValueError):
            await service.register(username, password)

    async def test_username_must_be_unique(self, service):
        await service.register("carol", "secret1")

        with pytest.raises(ConflictError):
            await service.register("carol", "another1")

    async def test_seed_only_on_empty_collection(self, service, worker_repo):
        assert await service.seed_defaults() == len(DEFAULT_WORKERS)
        assert await service.seed_defaults() == 0
        assert await worker_repo.count() == len(DEFAULT_WORKERS)


class TestLogin:
    async def test_token_round_trip(self, service, security):
        worker = await service.register("carol", "secret1")

        result = await service.login("carol", "secret1")
        decoded = await security.verify_token(result["token"])

        assert decoded["_id"] == worker["id"]
        assert result["worker"]["username"] == "carol"

    async def test_wrong_password(self, service):
        await service.register("carol", "secret1")

        with pytest.raises(AuthError):
            await service.login("carol", "wrong-one")

    async def test_logout_revokes_token(self, service, security):
        worker = await service.register("carol", "secret1")
        token = (await service.login("carol", "secret1"))["token"]

        await service.logout(worker["id"])

        with pytest.raises(AuthError):
            await security.verify_token(token)


class TestDelete:
    async def test_cannot_delete_worker_in_chat(self, service, open_room):
        room = await open_room()

        with pytest.raises(ConflictError):
            await service.delete(room["worker_id"])

    async def test_unknown_worker(self, service):
        with pytest.raises(LookupError):
            await service.delete("0" * 24)

    async def test_change_password(self, service):
        worker = await service.register("carol", "secret1")

        await service.change_password(worker["id"], "brand-new")

        assert (await service.login("carol", "brand-new"))["worker"]["id"] == worker["id"]

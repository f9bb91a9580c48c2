from datetime import timedelta
from typing import Callable, Iterable

from core.environment import EnvironmentSettings
from domain.events import Outgoing
from repositories.message import MessageRepository
from repositories.session import SessionRepository
from repositories.worker import WorkerRepository
from services.disconnect_handler import DisconnectHandler
from services.matching_engine import MatchingEngine
from services.message_pipeline import MessagePipeline
from services.notification import Notifier
from services.presence_registry import PresenceRegistry, CustomerRegistry
from services.session_lifecycle import SessionLifecycle
from services.typing_relay import TypingRelay


class SessionBroker:
    """Owns the broker's shared state and the services that mutate it."""

    def __init__(self,
                 worker_repo: WorkerRepository,
                 session_repo: SessionRepository,
                 message_repo: MessageRepository,
                 publish: Callable[[Iterable[Outgoing]], None],
                 env: EnvironmentSettings,
                 notifier: Notifier = None):
        self.worker_repo = worker_repo
        self.session_repo = session_repo
        self.publish = publish
        self.notifier = notifier
        self.presence = PresenceRegistry(worker_repo)
        self.customers = CustomerRegistry(timedelta(seconds=env.CUSTOMER_INACTIVITY_SECONDS))
        self.lifecycle = SessionLifecycle(session_repo, self.presence, self.customers)
        self.matching = MatchingEngine(self.presence, self.lifecycle, self.customers, notifier)
        self.pipeline = MessagePipeline(
            self.lifecycle, message_repo, publish, notifier,
            delivered_delay=env.DELIVERED_DELAY_MS / 1000,
        )
        self.typing = TypingRelay(self.lifecycle, self.customers, publish, env.TYPING_EXPIRY_SECONDS)
        self.disconnects = DisconnectHandler(
            self.presence, self.lifecycle, self.customers,
            join_timeout=timedelta(seconds=env.SESSION_JOIN_TIMEOUT_SECONDS),
        )

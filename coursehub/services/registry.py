from __future__ import annotations

from dataclasses import dataclass
import logging

from coursehub.core.config import Settings, get_settings
from coursehub.persistence.db import get_session_factory
from coursehub.persistence.repositories import Repositories, sql_repositories
from coursehub.services.cache import CacheBackend, CacheLayer, build_cache_backend
from coursehub.services.catalog import CatalogService
from coursehub.services.comments import CommentService
from coursehub.services.directory import Directory
from coursehub.services.events import EventBus
from coursehub.services.likes import LikeService
from coursehub.services.membership import MembershipService
from coursehub.services.notifications.dispatch import NotificationDispatcher
from coursehub.services.notifications.service import NotificationService


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ServiceRegistry:
    # Process-wide wiring: one bus, one cache, one dispatcher subscribed before the bus starts.
    repos: Repositories
    bus: EventBus
    cache: CacheLayer
    directory: Directory
    notifications: NotificationService
    dispatcher: NotificationDispatcher
    likes: LikeService
    catalog: CatalogService
    membership: MembershipService
    comments: CommentService

    @classmethod
    def build(
        cls,
        repos: Repositories,
        *,
        cache_backend: CacheBackend | None = None,
        bus: EventBus | None = None,
        settings: Settings | None = None,
    ) -> "ServiceRegistry":
        settings = settings or get_settings()
        bus = bus or EventBus(
            max_queue_size=settings.event_bus_max_queue_size,
            workers=settings.event_bus_workers,
        )
        cache = CacheLayer(
            cache_backend or build_cache_backend(settings),
            namespace=settings.cache_key_namespace,
            enabled=settings.cache_enabled,
            default_ttl_s=settings.cache_default_ttl_s,
        )
        directory = Directory(repos)
        notifications = NotificationService(repos.notifications, page_size_max=settings.notification_page_size_max)
        dispatcher = NotificationDispatcher(notifications, directory, settings=settings)
        dispatcher.register(bus)
        return cls(
            repos=repos,
            bus=bus,
            cache=cache,
            directory=directory,
            notifications=notifications,
            dispatcher=dispatcher,
            likes=LikeService(repos.likes, directory, bus),
            catalog=CatalogService(repos, cache, bus),
            membership=MembershipService(repos, bus),
            comments=CommentService(repos, cache, bus),
        )

    async def start(self) -> None:
        self.bus.start()
        logger.info("service_registry_started")

    async def stop(self) -> None:
        await self.bus.stop(drain=True)
        logger.info("service_registry_stopped")


def build_default_registry(settings: Settings | None = None) -> ServiceRegistry:
    # Production wiring: SQL repositories over the configured database.
    settings = settings or get_settings()
    return ServiceRegistry.build(sql_repositories(get_session_factory()), settings=settings)

"""Dependency injection with a singleton service manager.

This module wires the core components once per process (repository,
allocator, analytics dispatcher, redirect coordinator) and gives every
request a lightweight context carrying request metadata and a contextual
logger.
"""

import asyncio
import logging
import random
import time
import uuid
from dataclasses import dataclass, field
from typing import Optional

import redis.asyncio as redis
from fastapi import Depends, Request

from shortlink.allocator import ShortCodeAllocator
from shortlink.analytics import AnalyticsClient
from shortlink.code_space import CodeSpace
from shortlink.config import Settings, get_settings
from shortlink.database import async_session
from shortlink.dispatcher import ClickEventDispatcher
from shortlink.lifecycle import run_expiry_sweeper
from shortlink.link_service import LinkService
from shortlink.redirect import RedirectCoordinator
from shortlink.redis import close_redis, get_redis
from shortlink.repository import CachedShortLinkRepository, ShortLinkRepository, SQLAlchemyShortLinkRepository
from shortlink.schemas import RequestMetadata


# ============================================================================
# SINGLETON SERVICE MANAGER
# ============================================================================


class ServiceManager:
    """Singleton service manager for shared resources.

    Everything here outlives a single request: the dispatcher's worker tasks
    in particular must keep running after the request that produced an event
    has finished.
    """

    _instance: Optional["ServiceManager"] = None
    _initialized: bool = False

    def __new__(cls) -> "ServiceManager":
        """Implement singleton pattern."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    async def initialize(self) -> None:
        """Initialize shared resources once at startup."""
        if self._initialized:
            return

        self.settings = get_settings()
        self.logger = self._setup_logger()
        self.cache: redis.Redis | None = await get_redis() if self.settings.LINK_CACHE_ENABLED else None
        self.repository = self._setup_repository()
        self.code_space = CodeSpace(
            rng=random.SystemRandom(),
            default_length=self.settings.SHORT_CODE_DEFAULT_LENGTH,
            max_length=self.settings.SHORT_CODE_MAX_LENGTH,
        )
        self.allocator = ShortCodeAllocator(self.repository, self.code_space, self.settings.SHORT_CODE_MAX_RETRIES)
        self.analytics_client = AnalyticsClient(
            self.settings.ANALYTICS_SERVICE_URL,
            timeout=self.settings.ANALYTICS_TIMEOUT_SECONDS,
            health_timeout=self.settings.ANALYTICS_HEALTH_TIMEOUT_SECONDS,
        )
        self.dispatcher = ClickEventDispatcher(
            self.analytics_client,
            max_retries=self.settings.ANALYTICS_MAX_RETRIES,
            base_delay=self.settings.ANALYTICS_BASE_DELAY_SECONDS,
            max_batch_size=self.settings.ANALYTICS_MAX_BATCH_SIZE,
            queue_size=self.settings.ANALYTICS_QUEUE_SIZE,
            workers=self.settings.ANALYTICS_WORKERS,
            coalesce=self.settings.ANALYTICS_COALESCE_BATCHES,
        )
        await self.dispatcher.start()
        self.coordinator = RedirectCoordinator(self.repository, self.dispatcher)

        self.sweeper: asyncio.Task | None = None
        if self.settings.EXPIRY_SWEEP_INTERVAL_SECONDS > 0:
            self.sweeper = asyncio.create_task(
                run_expiry_sweeper(self.repository, self.settings.EXPIRY_SWEEP_INTERVAL_SECONDS)
            )

        self._initialized = True
        await self._check_analytics()

    def _setup_logger(self) -> logging.Logger:
        """Setup logger once."""
        logger = logging.getLogger("shortlink")
        if not logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            handler.setFormatter(formatter)
            logger.addHandler(handler)
            logger.setLevel(self.settings.LOG_LEVEL)
        return logger

    def _setup_repository(self) -> ShortLinkRepository:
        repository = SQLAlchemyShortLinkRepository(async_session)
        if self.cache is None:
            return repository
        return CachedShortLinkRepository(repository, self.cache, self.settings)

    async def _check_analytics(self) -> None:
        """Startup diagnostic only; dispatch runs whatever the answer."""
        self.logger.info(f"Connecting to analytics service at {self.settings.ANALYTICS_SERVICE_URL}...")
        if await self.dispatcher.is_analytics_healthy():
            self.logger.info("Analytics service is healthy and connected")
        else:
            self.logger.warning("Analytics service is not available (will continue without analytics)")

    async def cleanup(self) -> None:
        """Cleanup shared resources at shutdown."""
        if not self._initialized:
            return
        if self.sweeper is not None:
            self.sweeper.cancel()
            await asyncio.gather(self.sweeper, return_exceptions=True)
        await self.coordinator.drain()
        await self.dispatcher.stop(drain_timeout=self.settings.ANALYTICS_DRAIN_TIMEOUT_SECONDS)
        await self.analytics_client.close()
        await close_redis()
        self._initialized = False


# Global singleton instance
_service_manager = ServiceManager()


# ============================================================================
# LIGHTWEIGHT REQUEST CONTEXT
# ============================================================================


@dataclass
class RequestContext:
    """Per-request context with tracking information and shared resources.

    Attributes:
        service_manager: Singleton service manager with shared resources
        request_id: Unique identifier for this request
        trace_id: Correlation ID for distributed tracing
        user_agent: Client user agent string
        client_ip: Client IP address (first X-Forwarded-For hop if present)
        referer: Referer header
        country_hint: Country header set by an upstream CDN
        accept_language: Accept-Language header
        start_time: Request start timestamp
        tags: Request tags for categorization
    """

    service_manager: ServiceManager
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    trace_id: Optional[str] = None
    user_agent: Optional[str] = None
    client_ip: Optional[str] = None
    referer: Optional[str] = None
    country_hint: Optional[str] = None
    accept_language: Optional[str] = None
    start_time: float = field(default_factory=lambda: time.time())
    tags: list[str] = field(default_factory=list)

    @property
    def settings(self) -> Settings:
        """Get shared settings."""
        return self.service_manager.settings

    @property
    def logger(self) -> logging.LoggerAdapter:
        """Get shared logger with request context."""
        return logging.LoggerAdapter(
            self.service_manager.logger,
            {
                "request_id": self.request_id,
                "trace_id": self.trace_id or self.request_id,
                "client_ip": self.client_ip,
                "user_agent": self.user_agent,
                "tags": ",".join(self.tags),
            },
        )

    def metadata(self) -> RequestMetadata:
        return RequestMetadata(
            user_agent=self.user_agent,
            referer=self.referer,
            client_ip=self.client_ip,
            country_hint=self.country_hint,
            accept_language=self.accept_language,
        )

    def add_tag(self, tag: str) -> None:
        """Add a tag to the request context."""
        if tag not in self.tags:
            self.tags.append(tag)

    def get_duration(self) -> float:
        """Get request duration in milliseconds."""
        return (time.time() - self.start_time) * 1000


# ============================================================================
# DEPENDENCY FUNCTIONS
# ============================================================================


async def get_service_manager() -> ServiceManager:
    """Get the singleton service manager, initializing it on first use."""
    if not _service_manager._initialized:
        await _service_manager.initialize()
    return _service_manager


def _client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


async def get_request_context(
    request: Request,
    manager: ServiceManager = Depends(get_service_manager),
) -> RequestContext:
    """Build the request context from the inbound request."""
    headers = request.headers
    return RequestContext(
        service_manager=manager,
        trace_id=headers.get("x-trace-id"),
        user_agent=headers.get("user-agent"),
        client_ip=_client_ip(request),
        referer=headers.get("referer") or headers.get("referrer"),
        country_hint=headers.get("cf-ipcountry"),
        accept_language=headers.get("accept-language"),
    )


def get_link_service(ctx: RequestContext = Depends(get_request_context)) -> LinkService:
    return LinkService.from_context(ctx)


def get_redirect_coordinator(manager: ServiceManager = Depends(get_service_manager)) -> RedirectCoordinator:
    return manager.coordinator

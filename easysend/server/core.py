"""
Bulk send server wiring using FastAPI.
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, AsyncIterator, Callable

from fastapi import FastAPI

from easysend.common.config import Config
from easysend.common.grace import OfflineGraceCache
from easysend.common.scheduler import ThreadScheduler

from .accounts import AccountService, TokenSigner, seed_admin
from .broadcaster import ProgressBroadcaster
from .dispatch_engine import DispatchEngine
from .endpoint import LoopbackEndpoint
from .keygen import KeyGenerator
from .license_coordinator import LicenseCoordinator
from .persistence import InMemoryStore, open_store
from .routes import SendRoutes
from .services import SendService
from .session_coordinator import SessionCoordinator

if TYPE_CHECKING:
    from easysend.common.interfaces import IMessagingEndpoint
    from easysend.common.scheduler import Scheduler


class EasySendServer:
    """Main server class: builds every component and the FastAPI app."""

    def __init__(  # noqa: PLR0913
        self,
        config: Config | None = None,
        store: InMemoryStore | None = None,
        endpoint: IMessagingEndpoint | None = None,
        scheduler: Scheduler | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config or Config()
        self.logger = logging.getLogger(__name__)
        self.clock = clock

        self.config.UPLOADS_DIR.mkdir(parents=True, exist_ok=True)
        self.store = store if store is not None else open_store(self.config, self._seed)
        if store is not None:
            self._seed(store)

        self.broadcaster = ProgressBroadcaster()
        self.scheduler = scheduler or ThreadScheduler()
        self.endpoint = endpoint or LoopbackEndpoint(auto_pair=self.config.AUTO_PAIR)

        self.licenses = LicenseCoordinator(
            self.store,
            KeyGenerator(self.config.LICENSE_KEY_PREFIX),
            broadcaster=self.broadcaster,
            scheduler=self.scheduler,
            grace_cache=OfflineGraceCache(
                self.config.OFFLINE_GRACE_DAYS, self.config.GRACE_CACHE_PATH
            ),
            max_key_attempts=self.config.MAX_KEY_GENERATION_ATTEMPTS,
            clock=clock,
        )
        self.session = SessionCoordinator(
            self.endpoint,
            self.broadcaster,
            self.scheduler,
            relink_delay=self.config.RELINK_DELAY,
            logout_relink_delay=self.config.LOGOUT_RELINK_DELAY,
            max_auth_failures=self.config.MAX_AUTH_FAILURES,
            credentials_dir=self.config.LINK_CREDENTIALS_DIR,
            clock=clock,
        )
        self.engine = DispatchEngine(
            self.session,
            self.endpoint,
            self.store,
            self.broadcaster,
            self.scheduler,
            default_delay=self.config.DISPATCH_DELAY,
            name_fallback=self.config.NAME_FALLBACK,
            clock=clock,
        )
        self.accounts = AccountService(
            self.store,
            self.licenses,
            TokenSigner(self.config.TOKEN_SECRET, self.config.TOKEN_TTL, clock),
            clock=clock,
        )
        self.service = SendService(
            self.store,
            self.session,
            self.licenses,
            self.engine,
            self.config.UPLOADS_DIR,
            clock=clock,
        )

        self.app = FastAPI(title="EasySend", lifespan=self._lifespan)
        self.routes = SendRoutes(
            self.config,
            self.service,
            self.accounts,
            self.licenses,
            self.session,
            self.broadcaster,
        )
        self.routes.setup_routes(self.app)

    def _seed(self, store: InMemoryStore) -> None:
        if not self.config.ADMIN_PASSWORD:
            self.logger.warning("EASYSEND_ADMIN_PASSWORD not set, no admin seeded")
            return
        seed_admin(store, self.config.ADMIN_EMAIL, self.config.ADMIN_PASSWORD, self.clock)

    @asynccontextmanager
    async def _lifespan(self, _app: FastAPI) -> AsyncIterator[None]:
        self.start()
        try:
            yield
        finally:
            self.stop()

    def start(self) -> None:
        """Begin linking and start the periodic expiry sweep."""
        self.session.start()
        self.licenses.start_sweeper(self.config.SWEEP_INTERVAL)
        self.logger.info(
            "Server started on http://%s:%s",
            self.config.SERVER_HOST,
            self.config.SERVER_PORT,
        )

    def stop(self) -> None:
        self.licenses.stop_sweeper()
        self.session.stop()
        self.logger.info("Server stopped")

"""Wiring of the saga's external collaborators from settings."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field

from app.catalog.base import CatalogReader, CatalogWriter
from app.catalog.memory import InMemoryCatalog
from app.catalog.supabase import PostgRESTCatalog
from app.config import Settings
from app.crawl.base import CrawlClient
from app.crawl.browsertrix import BrowsertrixClient
from app.crawl.memory import ScriptedCrawlClient
from app.notify.base import Notifier
from app.notify.memory import OutboxNotifier
from app.notify.postmark import PostmarkNotifier
from app.services.orchestrator import CrawlOrchestrator
from app.services.supervisor import TaskSupervisor
from app.storage.base import ArtifactStore
from app.storage.memory import InMemoryArtifactStore
from app.storage.supabase import SupabaseArtifactStore, SupabaseClient

logger = logging.getLogger(__name__)


@dataclass
class Services:
    crawler: CrawlClient
    store: ArtifactStore
    catalog: CatalogWriter
    reader: CatalogReader
    notifier: Notifier
    orchestrator: CrawlOrchestrator
    supervisor: TaskSupervisor = field(default_factory=TaskSupervisor)
    signed_url_ttl: int = 3600

    async def aclose(self) -> None:
        await self.supervisor.shutdown()
        for leaf in (self.crawler, self.notifier, getattr(self.store, "client", None)):
            close = getattr(leaf, "aclose", None)
            if close is not None:
                await close()


def build_services(cfg: Settings) -> Services:
    if cfg.browsertrix_configured:
        crawler: CrawlClient = BrowsertrixClient(
            cfg.browsertrix_url,
            cfg.browsertrix_username,
            cfg.browsertrix_password,
            cfg.browsertrix_org_id,
            timeout=cfg.browsertrix_timeout,
        )
    else:
        logger.warning("Browsertrix not configured, using in-memory crawl client")
        crawler = ScriptedCrawlClient()

    if cfg.supabase_configured:
        sb = SupabaseClient(cfg.supabase_url, cfg.supabase_key, cfg.supabase_bucket, timeout=cfg.supabase_timeout)
        store: ArtifactStore = SupabaseArtifactStore(sb)
        catalog = PostgRESTCatalog(sb)
    else:
        logger.warning("Supabase not configured, artifacts and records stay in memory")
        store = InMemoryArtifactStore()
        catalog = InMemoryCatalog()

    if cfg.postmark_api_key and cfg.archive_sender_email:
        notifier: Notifier = PostmarkNotifier(
            cfg.postmark_api_key,
            cfg.archive_sender_email,
            api_base=cfg.postmark_api_base,
            timeout=cfg.notification_timeout,
        )
    else:
        logger.warning("Postmark not configured, notifications go to the outbox")
        notifier = OutboxNotifier()

    orchestrator = CrawlOrchestrator(
        crawler,
        store,
        catalog,
        notifier,
        poll_interval=cfg.poll_interval_seconds,
        max_attempts=cfg.poll_max_attempts,
        org_id=cfg.browsertrix_org_id,
        public_base_url=cfg.public_base_url,
    )
    return Services(
        crawler=crawler,
        store=store,
        catalog=catalog,
        reader=catalog,
        notifier=notifier,
        orchestrator=orchestrator,
        signed_url_ttl=cfg.signed_url_ttl_seconds,
    )

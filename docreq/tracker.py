"""
Wiring for a complete tracker: database, directory, store, object
storage, event hub, notification service and feed, and the lifecycle
engine, each handed its collaborators explicitly.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from docreq.config import TrackerConfig
from docreq.lifecycle.engine import RequestLifecycleEngine
from docreq.lifecycle.retention import RetentionSweeper
from docreq.notifications.fanout import NotificationService
from docreq.notifications.feed import NotificationFeed
from docreq.notifications.realtime import EventHub
from docreq.security.pdf_security import PdfSecurityPipeline
from docreq.storage.objects import ObjectStorage, build_storage
from docreq.store.database import Database
from docreq.store.directory import OrganizationDirectory
from docreq.store.requests import RequestStore


@dataclass
class Tracker:
    db: Database
    directory: OrganizationDirectory
    store: RequestStore
    storage: ObjectStorage
    hub: EventHub
    notifier: NotificationService
    feed: NotificationFeed
    engine: RequestLifecycleEngine

    @classmethod
    def from_config(
        cls, config: TrackerConfig, storage: Optional[ObjectStorage] = None
    ) -> "Tracker":
        db = Database(config.database_url)
        directory = OrganizationDirectory(db)
        store = RequestStore(db)
        hub = EventHub()
        notifier = NotificationService(db, directory, hub)
        storage = storage or build_storage(config.storage)
        engine = RequestLifecycleEngine(
            store,
            directory,
            notifier,
            storage,
            security=PdfSecurityPipeline(),
            hub=hub,
            config=config.lifecycle,
        )
        return cls(
            db=db,
            directory=directory,
            store=store,
            storage=storage,
            hub=hub,
            notifier=notifier,
            feed=NotificationFeed(db, hub),
            engine=engine,
        )

    def sweeper(self) -> RetentionSweeper:
        return RetentionSweeper(self.engine)

    def close(self) -> None:
        self.hub.close()
        self.db.dispose()

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from geotally.errors import StoreError
from geotally.models import CountryCount, IPAddress
from geotally.ranges import RangeIndex
from geotally.resolver import Resolver
from geotally.store import CountryStore

logger = logging.getLogger(__name__)


class GeoAnalytics:
    """Resolves client addresses to countries and counts requests per country.

    The index is read-only and shared freely. The store is borrowed: it does
    its own locking, and store calls run in worker threads so the event loop
    never waits on disk.
    """

    def __init__(self, index: RangeIndex, store: CountryStore) -> None:
        self.resolver = Resolver(index)
        self.store = store

    @classmethod
    def open(cls, dataset_path: str | Path, store_path: str | Path) -> GeoAnalytics:
        """Load the range dataset and open the store.

        Raises DatasetError or StoreError; both are fatal at startup.
        """
        index = RangeIndex.load(dataset_path)
        store = CountryStore.open(store_path)
        return cls(index, store)

    @property
    def index(self) -> RangeIndex:
        return self.resolver.index

    async def resolve_and_record(self, ip: str | IPAddress) -> str | None:
        """Resolve ``ip`` and, on a match, count one request for its country.

        A failed increment is logged and otherwise ignored; the country is
        returned either way. Raises ValueError for a malformed address string.
        """
        country = self.resolver.resolve(ip)
        if country is None:
            return None
        try:
            await asyncio.to_thread(self.store.increment, country)
        except StoreError as exc:
            logger.warning("Failed to record request from %s: %s", country, exc)
        return country

    async def snapshot_report(self) -> list[CountryCount]:
        return await asyncio.to_thread(self.store.snapshot)

    def close(self) -> None:
        self.store.close()

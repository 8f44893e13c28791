"""
Multi-source content fetcher.

Sources are tried one at a time in a fixed order; the first success wins and
the remaining sources are never contacted. When every source fails, the
NotFoundError carries each attempt's reason in attempt order.

Order by connection mode:

    gateway:  primary gateway -> fallback gateways -> local node
    api:      local node -> primary gateway -> fallback gateways
"""

from __future__ import annotations

import logging
from typing import List, Optional, Protocol, Sequence

import requests

from nexuslog.protocol.enums import ConnectionMode
from nexuslog.protocol.errors import NotFoundError
from nexuslog.protocol.models import FetchAttempt
from nexuslog.transport.gateway import GatewaySource, LocalNodeSource, SourceError

logger = logging.getLogger(__name__)


class ContentSource(Protocol):
    name: str

    def fetch(self, cid: str) -> bytes:
        ...


def build_sources(store, session: Optional[requests.Session] = None) -> List[ContentSource]:
    """Build the ordered source list for ``store.connection_mode``."""
    session = session or requests.Session()

    gateways: List[ContentSource] = [
        GatewaySource(store.gateway_url, store.timeout, session, label="gateway")
    ]
    if store.use_fallback_gateways:
        gateways.extend(
            GatewaySource(url, store.timeout, session, label="fallback gateway")
            for url in store.fallback_gateways
        )
    local = LocalNodeSource(store.api_url, store.timeout, session)

    if store.connection_mode == ConnectionMode.GATEWAY:
        return gateways + [local]
    return [local] + gateways


class ContentFetcher:
    def __init__(self, sources: Sequence[ContentSource]):
        if not sources:
            raise ValueError("ContentFetcher requires at least one source")
        self._sources = list(sources)

    @classmethod
    def from_settings(cls, store, session: Optional[requests.Session] = None) -> "ContentFetcher":
        return cls(build_sources(store, session))

    @property
    def sources(self) -> List[ContentSource]:
        return list(self._sources)

    def fetch(self, cid: str) -> bytes:
        cid = (cid or "").strip()
        if not cid:
            raise ValueError("content identifier is required")

        attempts: List[FetchAttempt] = []
        for source in self._sources:
            try:
                data = source.fetch(cid)
            except SourceError as e:
                attempts.append(FetchAttempt(source=source.name, reason=str(e)))
                logger.warning(
                    "Fetch from %s failed: %s",
                    source.name,
                    e,
                    extra={"cid": cid, "operation": "fetch"},
                )
                continue

            logger.info(
                "Fetched %d bytes from %s",
                len(data),
                source.name,
                extra={"cid": cid, "operation": "fetch"},
            )
            return data

        raise NotFoundError(cid, attempts)

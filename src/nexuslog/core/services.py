from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import requests

from nexuslog.node.client import NodeClient
from nexuslog.node.supervisor import NodeProcessSupervisor
from nexuslog.security.hybrid import HybridDecryptor

from .chain import ChainWalker
from .fetcher import ContentFetcher
from .keys import KeyRegistry
from .resolver import NameResolver
from .settings import NexusSettings


@dataclass
class NexusServices:
    """
    Components built from one settings object.

    Settings are fixed for the lifetime of an instance; a configuration
    change means building a new NexusServices.
    """

    settings: NexusSettings
    supervisor: NodeProcessSupervisor
    node: NodeClient
    fetcher: ContentFetcher
    decryptor: HybridDecryptor
    resolver: NameResolver
    keys: KeyRegistry
    walker: ChainWalker


def build_services(
    settings: NexusSettings,
    session: Optional[requests.Session] = None,
) -> NexusServices:
    node = NodeClient(settings.store, settings.encryption)
    fetcher = ContentFetcher.from_settings(settings.store, session)
    decryptor = HybridDecryptor(settings.encryption)
    resolver = NameResolver(settings.store, settings.encryption, node)

    return NexusServices(
        settings=settings,
        supervisor=NodeProcessSupervisor(settings.store, settings.network),
        node=node,
        fetcher=fetcher,
        decryptor=decryptor,
        resolver=resolver,
        keys=KeyRegistry(node),
        walker=ChainWalker(
            fetcher,
            decryptor,
            resolver,
            sort_field=settings.logging.sort_field,
            sort_order=settings.logging.sort_order,
        ),
    )

from .core.chain import ChainWalker, parse_bundle, parse_entries
from .core.fetcher import ContentFetcher
from .core.keys import KeyRegistry
from .core.resolver import NameResolver
from .core.services import NexusServices, build_services
from .core.settings import NexusSettings, load_settings
from .node.supervisor import NodeProcessSupervisor
from .protocol import LogBundle, LogEntry, NexusError
from .security.hybrid import HybridDecryptor, HybridEncryptor

__version__ = "0.1.0"

__all__ = [
    "ChainWalker",
    "ContentFetcher",
    "HybridDecryptor",
    "HybridEncryptor",
    "KeyRegistry",
    "LogBundle",
    "LogEntry",
    "NameResolver",
    "NexusError",
    "NexusServices",
    "NexusSettings",
    "NodeProcessSupervisor",
    "build_services",
    "load_settings",
    "parse_bundle",
    "parse_entries",
]

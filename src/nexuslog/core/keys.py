from __future__ import annotations

import logging
from typing import List

from nexuslog.protocol.errors import DuplicateKeyError
from nexuslog.protocol.models import KeyInfo

logger = logging.getLogger(__name__)


class KeyRegistry:
    """
    Naming identities held by the local node.

    Key material is generated by the node (``key gen``); the registry only
    lists keys and refuses to create a second key under an existing name.
    """

    def __init__(self, node_client):
        self._node = node_client

    def list(self) -> List[KeyInfo]:
        return self._node.list_keys()

    def create(self, name: str) -> str:
        name = (name or "").strip()
        if not name:
            raise ValueError("key name is required")

        if any(key.name == name for key in self.list()):
            logger.warning("Attempted to create duplicate IPNS key %s", name)
            raise DuplicateKeyError(name)

        logger.info("Creating new IPNS key %s", name)
        value = self._node.gen_key(name)
        logger.info("IPNS key %s created: %s", name, value)
        return value

"""
HTTP content sources for the fetcher.

- GatewaySource: public HTTP gateway, GET <gateway>/<cid>
- LocalNodeSource: local node HTTP API, POST /api/v0/cat?arg=<cid>

Both return raw bytes or raise SourceError carrying the reason text.
"""

from __future__ import annotations

from typing import Optional

import requests

USER_AGENT = "Nexus-CLI"


class SourceError(Exception):
    """One source failed to produce content. Caught by the fetcher."""


class GatewaySource:
    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
        label: str = "gateway",
    ):
        self._base_url = base_url if base_url.endswith("/") else base_url + "/"
        self._timeout = timeout
        self._session = session or requests.Session()
        self.name = f"{label} {self._base_url}"

    @property
    def base_url(self) -> str:
        return self._base_url

    def fetch(self, cid: str) -> bytes:
        try:
            response = self._session.get(
                self._base_url + cid,
                headers={"User-Agent": USER_AGENT},
                timeout=self._timeout,
            )
        except requests.RequestException as e:
            raise SourceError(str(e)) from e

        if not response.ok:
            raise SourceError(f"Gateway responded with status {response.status_code}")
        return response.content


class LocalNodeSource:
    def __init__(
        self,
        api_url: str,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        self._api_url = api_url.rstrip("/")
        self._timeout = timeout
        self._session = session or requests.Session()
        self.name = f"local node {self._api_url}"

    def fetch(self, cid: str) -> bytes:
        try:
            response = self._session.post(
                f"{self._api_url}/api/v0/cat",
                params={"arg": cid},
                headers={"User-Agent": USER_AGENT},
                timeout=self._timeout,
            )
        except requests.RequestException as e:
            raise SourceError(str(e)) from e

        if not response.ok:
            detail = _node_error_message(response)
            raise SourceError(f"Local node responded with status {response.status_code}{detail}")
        return response.content


def _node_error_message(response: requests.Response) -> str:
    # The node API reports errors as {"Message": ..., "Code": ..., "Type": "error"}
    try:
        data = response.json()
    except ValueError:
        return ""
    message = data.get("Message") if isinstance(data, dict) else None
    return f": {message}" if message else ""

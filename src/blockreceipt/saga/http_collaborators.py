# src/blockreceipt/saga/http_collaborators.py

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import httpx

from ..tasks.task_models import StrategyOutcome

logger = logging.getLogger(__name__)


def make_timeout(connect_s: float = 5.0, read_s: float = 30.0) -> httpx.Timeout:
    """Explicit timeouts so a stuck marketplace can't pin a dispatcher slot forever."""
    return httpx.Timeout(connect=connect_s, read=read_s, write=10.0, pool=connect_s)


def _is_connection_error(exc: Exception) -> bool:
    return isinstance(exc, (httpx.ConnectError, httpx.TimeoutException, httpx.NetworkError))


def friendly_http_error(exc: Exception) -> str:
    if isinstance(exc, httpx.HTTPStatusError):
        return f"HTTP {exc.response.status_code} from {exc.request.url}"
    if _is_connection_error(exc):
        return f"Service unreachable ({exc.__class__.__name__})"
    return f"{exc.__class__.__name__}: {exc}"


class _HttpCollaborator:
    def __init__(
        self,
        base_url: str,
        *,
        timeout: httpx.Timeout | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not base_url:
            raise ValueError("base_url is required")
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout or make_timeout()
        self._client = client

    async def _post(self, path: str, body: Mapping[str, Any]) -> httpx.Response:
        url = f"{self._base_url}/{path.lstrip('/')}"
        if self._client is not None:
            return await self._client.post(url, json=dict(body), timeout=self._timeout)
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await client.post(url, json=dict(body))


class HttpAcquisitionStrategy(_HttpCollaborator):
    """
    Calls a purchase/mint service over HTTP.

    Transport errors and non-2xx answers become success=False outcomes, so a
    broken marketplace pushes the saga onto its fallback instead of crashing it.
    """

    def __init__(
        self,
        base_url: str,
        *,
        path: str = "/purchase",
        timeout: httpx.Timeout | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(base_url, timeout=timeout, client=client)
        self._path = path

    async def attempt(self, payload: Mapping[str, Any]) -> StrategyOutcome:
        try:
            resp = await self._post(self._path, payload)
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            msg = friendly_http_error(exc)
            logger.warning("Acquisition call %s failed: %s", self._path, msg)
            return StrategyOutcome(success=False, error=msg)

        if not isinstance(data, Mapping):
            return StrategyOutcome(success=False, error="Unexpected response body")
        return StrategyOutcome.from_mapping(data)


class HttpMetadataStore(_HttpCollaborator):
    """
    Stores the encrypted bundle via the metadata service.

    Returns False on a non-2xx answer; transport errors propagate so the
    finalize handler reports them as infrastructure failures.
    """

    def __init__(
        self,
        base_url: str,
        *,
        path: str = "/metadata",
        timeout: httpx.Timeout | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(base_url, timeout=timeout, client=client)
        self._path = path

    async def store(
        self,
        token_id: str,
        owner_key: str,
        bundle: str,
        preview: Mapping[str, Any],
    ) -> bool:
        resp = await self._post(
            self._path,
            {"token_id": token_id, "owner": owner_key, "bundle": bundle, "preview": dict(preview)},
        )
        if resp.is_success:
            return True
        logger.warning("Metadata store answered HTTP %s for token %s", resp.status_code, token_id)
        return False

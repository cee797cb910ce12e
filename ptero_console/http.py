"""HTTP client for the Pterodactyl panel client API."""

from __future__ import annotations

from typing import Any, Final

import aiohttp

from .errors import (
    PteroConnectionError,
    PteroResponseError,
    PteroTimeout,
)
from .models import PteroCredential

API_ACCEPT: Final = "application/vnd.pterodactyl.v1+json"


class PteroHttpClient:
    """HTTP client wrapper for the panel's client API."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        panel_url: str,
        client_key: str,
        *,
        timeout: float = 10.0,
    ) -> None:
        self._session = session
        self._panel_url = panel_url.rstrip("/")
        self._client_key = client_key
        self._timeout = timeout

    @property
    def panel_url(self) -> str:
        return self._panel_url

    def _url(self, path: str) -> str:
        return f"{self._panel_url}{path}"

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._client_key}",
            "Accept": API_ACCEPT,
            "Content-Type": "application/json",
        }

    async def fetch_websocket_credential(self, server_id: str) -> PteroCredential:
        """Exchange the client API key for a websocket token.

        Args:
            server_id: Server identifier or UUID.

        Returns:
            Credential holding the token and the daemon socket URL.

        Raises:
            PteroResponseError: Non-2xx status or unexpected body.
            PteroTimeout: Request timed out.
            PteroConnectionError: Network request failed.
        """
        url = self._url(f"/api/client/servers/{server_id}/websocket")
        try:
            async with self._session.get(
                url,
                headers=self._headers(),
                timeout=aiohttp.ClientTimeout(total=self._timeout),
            ) as resp:
                if not 200 <= resp.status < 300:
                    body = await resp.text()
                    raise PteroResponseError(
                        resp.status,
                        f"Websocket credential request failed ({resp.status}): {body}",
                    )
                try:
                    data = await resp.json(content_type=None)
                except ValueError as err:
                    raise PteroResponseError(
                        resp.status, "Websocket credential response is not JSON"
                    ) from err
                return _parse_credential(resp.status, data)
        except TimeoutError as err:
            raise PteroTimeout("Websocket credential request timed out") from err
        except aiohttp.ClientError as err:
            raise PteroConnectionError("Websocket credential request failed") from err


def _parse_credential(status: int, payload: Any) -> PteroCredential:
    data = payload.get("data") if isinstance(payload, dict) else None
    if not isinstance(data, dict):
        raise PteroResponseError(status, "Websocket credential response has no data")

    token = data.get("token")
    socket_url = data.get("socket")
    if not isinstance(token, str) or not token:
        raise PteroResponseError(status, "Websocket credential response has no token")
    if not isinstance(socket_url, str) or not socket_url:
        raise PteroResponseError(status, "Websocket credential response has no socket")

    return PteroCredential(token=token, socket_url=socket_url)

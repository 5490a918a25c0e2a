"""HTTP client for the invoked web script.

Every call is an authenticated GET of one fixed path with the record's message
as the single `message` query parameter, e.g.
    http://localhost:8080/alfresco/service/sample/helloworld?message=Message+0000003
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from users.service import UserData

logger = logging.getLogger(__name__)

HTTP_OK = 200


@dataclass(frozen=True)
class CallStatus:
    status_code: int
    reason_phrase: str

    @property
    def ok(self) -> bool:
        return self.status_code == HTTP_OK


class WebScriptClient:
    def __init__(
        self,
        *,
        base_url: str,
        path: str,
        timeout_seconds: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self._path = path if path.startswith("/") else "/" + path
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=timeout_seconds,
            transport=transport,
        )

    def invoke(self, user: UserData, message: str) -> CallStatus:
        try:
            response = self._client.get(
                self._path,
                params={"message": message},
                auth=httpx.BasicAuth(user.username, user.password),
            )
        except httpx.HTTPError as e:
            logger.warning("web_script_transport_error", extra={"event": "web_script_transport_error"}, exc_info=True)
            return CallStatus(status_code=0, reason_phrase=f"{type(e).__name__}: {e}")
        return CallStatus(status_code=response.status_code, reason_phrase=response.reason_phrase)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "WebScriptClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

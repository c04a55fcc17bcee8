"""
Blocking REST transport shared by the HTTP-signed adapters.

Adapters build the exact query string and body they signed and pass them
through unchanged, so the bytes on the wire match the signature input.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests
import structlog

from funding_trader.core.errors import MalformedResponseError, TransportError

logger = structlog.get_logger(__name__)

DEFAULT_TIMEOUT_SEC = 30.0


@dataclass
class HttpResponse:
    status: int
    payload: Any
    text: str = ""


class RestTransport:
    """
    Thin wrapper over requests.Session with a per-call timeout.

    requests exceptions become TransportError; bodies that are not JSON
    become MalformedResponseError (or TransportError for 5xx).
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT_SEC,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def request(
        self,
        method: str,
        path: str,
        query: str = "",
        body: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> HttpResponse:
        """
        Send one request.

        Args:
            method: HTTP verb
            path: Path appended to base_url
            query: Pre-encoded query string without the leading "?"
            body: Pre-serialized request body
            headers: Request headers

        Returns:
            HttpResponse with the decoded JSON payload
        """
        url = f"{self.base_url}{path}"
        if query:
            url = f"{url}?{query}"
        try:
            resp = self.session.request(
                method=method,
                url=url,
                data=body.encode("utf-8") if body is not None else None,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.Timeout as exc:
            raise TransportError(f"{method} {path} timed out after {self.timeout}s") from exc
        except requests.RequestException as exc:
            raise TransportError(f"{method} {path} failed: {exc}") from exc

        text = resp.text or ""
        try:
            payload = json.loads(text) if text else None
        except ValueError as exc:
            if resp.status_code >= 500:
                raise TransportError(f"{method} {path} returned HTTP {resp.status_code}") from exc
            raise MalformedResponseError(
                f"{method} {path} returned non-JSON body (HTTP {resp.status_code}): {text[:200]}"
            ) from exc

        logger.debug("http_response", method=method, path=path, status=resp.status_code)
        return HttpResponse(status=resp.status_code, payload=payload, text=text)

    def close(self) -> None:
        self.session.close()

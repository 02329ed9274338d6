"""HTTP request node backed by httpx."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

import httpx

from ..credentials import CredentialScope
from ..errors import HandlerFailureError

logger = logging.getLogger(__name__)

_BODY_METHODS = {"POST", "PUT", "PATCH", "DELETE"}


class HttpRequestNode:
    """Performs one HTTP request per invocation.

    A configured credential may contribute ``baseUrl``, extra ``headers``, a
    bearer ``token`` or an ``apiKey`` (sent in ``apiKeyHeader``, default
    ``X-API-Key``).
    """

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self._transport = transport

    async def __call__(
        self,
        inputs: Dict[str, Any],
        config: Dict[str, Any],
        credentials: CredentialScope,
    ) -> Dict[str, Any]:
        method = str(config.get("method") or "GET").upper()
        url = config.get("url")
        if not url:
            raise HandlerFailureError("http_request requires a 'url' parameter", retryable=False)

        headers = {str(k): str(v) for k, v in (config.get("headers") or {}).items()}
        base_url = ""
        if credentials.configured:
            secret = await credentials.get()
            base_url = secret.get("baseUrl") or ""
            headers.update(secret.get("headers") or {})
            if secret.get("token"):
                headers["Authorization"] = f"Bearer {secret['token']}"
            if secret.get("apiKey"):
                headers[secret.get("apiKeyHeader") or "X-API-Key"] = secret["apiKey"]

        client_kwargs: Dict[str, Any] = {"base_url": base_url, "transport": self._transport}
        if config.get("timeout"):
            client_kwargs["timeout"] = float(config["timeout"]) / 1000

        request_kwargs = self._body_kwargs(method, config, inputs.get("input"))
        async with httpx.AsyncClient(**client_kwargs) as client:
            response = await client.request(method, url, headers=headers, **request_kwargs)

        logger.debug(f"{method} {response.request.url} -> {response.status_code}")
        if response.is_error:
            raise HandlerFailureError(
                f"HTTP {response.status_code} from {method} {response.request.url}",
                retryable=response.status_code >= 500 or response.status_code == 429,
            )

        try:
            body: Any = response.json()
        except ValueError:
            body = response.text
        return {
            "output": {
                "status": response.status_code,
                "headers": dict(response.headers),
                "body": body,
            }
        }

    @staticmethod
    def _body_kwargs(method: str, config: Dict[str, Any], upstream: Any) -> Dict[str, Any]:
        body = config.get("body")
        body_type = config.get("bodyType") or "json"
        if body in (None, ""):
            if method in _BODY_METHODS and upstream is not None and body_type == "json":
                return {"json": upstream}
            return {}
        if body_type == "json":
            if isinstance(body, str):
                try:
                    body = json.loads(body)
                except ValueError as exc:
                    raise HandlerFailureError(f"Invalid JSON body: {exc}", retryable=False)
            return {"json": body}
        if body_type == "form":
            if not isinstance(body, dict):
                raise HandlerFailureError("form body must be a mapping", retryable=False)
            return {"data": body}
        return {"content": str(body)}

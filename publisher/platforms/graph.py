"""Per-token Graph API client.

Each instance owns its own ``FacebookAdsApi`` built on a private
``FacebookSession``; nothing is registered as the SDK default, so tokens from
different requests never mix.  All SDK calls are synchronous and are wrapped
with ``asyncio.to_thread()`` by the async helpers.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Iterable
from typing import Any

import requests
from facebook_business.api import FacebookAdsApi, FacebookSession
from facebook_business.exceptions import FacebookRequestError

from publisher.platforms.base import GraphErrorEnvelope
from publisher.platforms.exceptions import RemoteAPIError, TokenExpired
from publisher.utils.redaction import redact_token

logger = logging.getLogger(__name__)

# OAuthException code for invalid / expired / revoked access tokens
OAUTH_INVALID_TOKEN_CODE = 190


def _split_path(path: str) -> tuple[str, ...]:
    # The SDK treats a plain string as a full URL, so always hand it segments
    return tuple(segment for segment in path.strip("/").split("/") if segment)


def _remote_error_from_sdk(exc: FacebookRequestError) -> RemoteAPIError | TokenExpired:
    body = exc.body()
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        error = GraphErrorEnvelope.model_validate(body).error
        message = error.message
        code = error.code
        subcode = error.error_subcode
        error_type = error.type
        fbtrace_id = error.fbtrace_id
    else:
        message = exc.api_error_message() or str(exc)
        code = exc.api_error_code()
        subcode = exc.api_error_subcode()
        error_type = exc.api_error_type()
        fbtrace_id = None

    if code == OAUTH_INVALID_TOKEN_CODE:
        return TokenExpired(
            message,
            details={"code": code, "subcode": subcode, "requires_reauth": True},
        )

    return RemoteAPIError(
        message,
        code=code,
        subcode=subcode,
        error_type=error_type,
        http_status=exc.http_status(),
        fbtrace_id=fbtrace_id,
    )


class GraphClient:
    """Thin request/response wrapper around ``FacebookAdsApi.call``."""

    def __init__(
        self,
        access_token: str | None,
        *,
        app_id: str = "",
        app_secret: str = "",
        api_version: str = "v24.0",
        timeout: float = 30.0,
    ) -> None:
        self._access_token = access_token
        session = FacebookSession(
            app_id=app_id or None,
            app_secret=app_secret or None,
            access_token=access_token,
            timeout=timeout,
        )
        self._api = FacebookAdsApi(session, api_version=api_version)
        self.api_version = api_version

    def request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Issue one Graph call and return the decoded JSON body.

        Platform errors are raised as :class:`RemoteAPIError` (or
        :class:`TokenExpired` for OAuth code 190); transport failures,
        including timeouts, become a :class:`RemoteAPIError` without a code.
        """
        started = time.monotonic()
        logger.debug(
            "Graph %s /%s start token=%s",
            method,
            path.strip("/"),
            redact_token(self._access_token),
        )
        try:
            response = self._api.call(method, _split_path(path), params=params or {})
        except FacebookRequestError as exc:
            error = _remote_error_from_sdk(exc)
            logger.warning(
                "Graph %s /%s failed in %.0fms: %s (code=%s)",
                method,
                path.strip("/"),
                (time.monotonic() - started) * 1000,
                error.message,
                error.details.get("code"),
            )
            raise error from exc
        except requests.RequestException as exc:
            logger.warning("Graph %s /%s transport error: %s", method, path.strip("/"), exc)
            raise RemoteAPIError(f"Graph request failed: {exc}") from exc

        logger.info(
            "Graph %s /%s ok in %.0fms",
            method,
            path.strip("/"),
            (time.monotonic() - started) * 1000,
        )
        body = response.json()
        return body if isinstance(body, dict) else {"data": body}

    async def get(
        self,
        path: str,
        *,
        fields: Iterable[str] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        query = dict(params or {})
        if fields:
            query["fields"] = ",".join(fields)
        return await asyncio.to_thread(self.request, "GET", path, query)

    async def post(self, path: str, data: dict[str, Any] | None = None) -> dict[str, Any]:
        return await asyncio.to_thread(self.request, "POST", path, data)

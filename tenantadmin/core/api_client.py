"""
HTTP client for the SaaS platform API.

The console owns no billing data of its own: plans, tenants and invoices live
behind the platform API. Every call is made on behalf of the signed-in
super-admin, whose email travels in the ``X-User-Email`` header. The acting
user is passed in explicitly as an :class:`ActorContext` so that callers
(views, management commands, tests) decide who is acting, not a global.

Responses share one envelope::

    {"success": true, "data": ..., "message": "...", "timestamp": 1700000000000}

Failures (transport errors, non-2xx statuses, ``success: false``) are raised
as :class:`PlatformApiError` carrying the most specific message the platform
returned.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx
from django.conf import settings

logger = logging.getLogger(__name__)

USER_EMAIL_HEADER = "X-User-Email"


@dataclass(frozen=True)
class ActorContext:
    """The super-admin on whose behalf platform calls are made."""

    email: str
    display_name: str = ""

    @classmethod
    def from_user(cls, user) -> ActorContext:
        name = user.get_full_name() if hasattr(user, "get_full_name") else ""
        return cls(email=getattr(user, "email", "") or "", display_name=name or "")


@dataclass(frozen=True)
class ApiEnvelope:
    """Parsed platform response."""

    success: bool
    data: Any = None
    message: str = ""
    status_code: int = 200


class PlatformApiError(Exception):
    """Raised when the platform API call fails or reports failure."""

    def __init__(
        self,
        detail: str,
        code: str = "platform_error",
        status_code: int | None = None,
        platform_message: str | None = None,
    ):
        self.detail = detail
        self.code = code
        self.status_code = status_code
        # The platform's own wording, when the response carried one.
        self.platform_message = platform_message
        super().__init__(detail)


def extract_error_message(body: Any) -> str | None:
    """Return the platform's own error text from a decoded body, if present."""
    if not isinstance(body, dict):
        return None
    for key in ("error", "message", "detail"):
        value = body.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
        if isinstance(value, dict):
            nested = value.get("message")
            if isinstance(nested, str) and nested.strip():
                return nested.strip()
    return None


class PlatformApiClient:
    """
    Thin synchronous wrapper over ``httpx`` for platform API calls.

    ``transport`` is exposed so tests can plug in ``httpx.MockTransport``.
    """

    def __init__(
        self,
        actor: ActorContext | None = None,
        *,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.actor = actor
        self.base_url = base_url or settings.PLATFORM_API_URL
        self.timeout = timeout if timeout is not None else settings.PLATFORM_API_TIMEOUT
        self.transport = transport

    def _get_headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.actor and self.actor.email:
            headers[USER_EMAIL_HEADER] = self.actor.email
        return headers

    def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        data: dict[str, Any] | None = None,
        files: dict[str, Any] | None = None,
    ) -> ApiEnvelope:
        """Perform a call and return the decoded envelope."""
        try:
            with httpx.Client(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self.transport,
            ) as client:
                response = client.request(
                    method,
                    path,
                    params=params,
                    json=json,
                    data=data,
                    files=files,
                    headers=self._get_headers(),
                )
        except httpx.HTTPError as exc:
            logger.exception("Platform API %s %s failed", method, path)
            raise PlatformApiError(
                f"Could not reach the platform API: {exc}",
                code="transport_error",
            ) from exc

        try:
            body = response.json()
        except ValueError:
            body = None

        if response.is_error:
            platform_message = extract_error_message(body)
            detail = platform_message or (
                f"Platform API returned HTTP {response.status_code}"
            )
            logger.warning(
                "Platform API %s %s returned %s: %s",
                method,
                path,
                response.status_code,
                detail,
            )
            raise PlatformApiError(
                detail,
                code="http_error",
                status_code=response.status_code,
                platform_message=platform_message,
            )

        if not isinstance(body, dict):
            raise PlatformApiError(
                "Platform API returned an unreadable response",
                code="invalid_response",
                status_code=response.status_code,
            )

        envelope = ApiEnvelope(
            success=bool(body.get("success", True)),
            data=body.get("data"),
            message=str(body.get("message") or ""),
            status_code=response.status_code,
        )
        if not envelope.success:
            platform_message = extract_error_message(body)
            raise PlatformApiError(
                platform_message or "The platform rejected the request",
                code="rejected",
                status_code=response.status_code,
                platform_message=platform_message,
            )
        return envelope

    def get(self, path: str, **kwargs) -> ApiEnvelope:
        return self.request("GET", path, **kwargs)

    def post(self, path: str, **kwargs) -> ApiEnvelope:
        return self.request("POST", path, **kwargs)

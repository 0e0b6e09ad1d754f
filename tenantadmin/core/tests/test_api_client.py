"""
Tests for the platform API client.

Covers the actor header, envelope decoding and the way failures are turned
into PlatformApiError.
"""

import httpx
import pytest

from tenantadmin.core.api_client import USER_EMAIL_HEADER
from tenantadmin.core.api_client import ActorContext
from tenantadmin.core.api_client import PlatformApiClient
from tenantadmin.core.api_client import PlatformApiError
from tenantadmin.core.api_client import extract_error_message

ACTOR = ActorContext(email="superadmin@console.example", display_name="Super Admin")


def make_client(handler, actor=ACTOR) -> PlatformApiClient:
    return PlatformApiClient(
        actor,
        base_url="http://platform.test",
        timeout=1.0,
        transport=httpx.MockTransport(handler),
    )


class TestActorHeader:
    def test_sends_actor_email_on_every_call(self):
        seen = []

        def handler(request):
            seen.append(request.headers.get(USER_EMAIL_HEADER))
            return httpx.Response(200, json={"success": True, "data": []})

        client = make_client(handler)
        client.get("/api/subscriptions/plans")
        client.post("/api/subscriptions/tenants/t-1/assign-plan", json={})

        assert seen == [ACTOR.email, ACTOR.email]

    def test_no_header_without_actor(self):
        def handler(request):
            assert USER_EMAIL_HEADER not in request.headers
            return httpx.Response(200, json={"success": True})

        make_client(handler, actor=None).get("/ping")

    def test_actor_from_user(self, user):
        actor = ActorContext.from_user(user)

        assert actor.email == "superadmin@console.example"
        assert actor.display_name == user.get_full_name()


class TestEnvelope:
    def test_success_envelope(self):
        def handler(request):
            return httpx.Response(
                200,
                json={"success": True, "data": {"id": 1}, "message": "ok"},
            )

        envelope = make_client(handler).get("/thing")

        assert envelope.success is True
        assert envelope.data == {"id": 1}
        assert envelope.message == "ok"
        assert envelope.status_code == 200  # noqa: PLR2004

    def test_rejected_envelope_raises_with_platform_message(self):
        def handler(request):
            return httpx.Response(
                200,
                json={"success": False, "error": "Tenant already has an active plan"},
            )

        with pytest.raises(PlatformApiError) as excinfo:
            make_client(handler).post("/assign", json={})

        assert excinfo.value.code == "rejected"
        assert excinfo.value.detail == "Tenant already has an active plan"
        assert excinfo.value.platform_message == "Tenant already has an active plan"

    def test_http_error_uses_body_message(self):
        def handler(request):
            return httpx.Response(422, json={"message": "Plan is not public"})

        with pytest.raises(PlatformApiError) as excinfo:
            make_client(handler).post("/assign", json={})

        assert excinfo.value.code == "http_error"
        assert excinfo.value.status_code == 422  # noqa: PLR2004
        assert excinfo.value.platform_message == "Plan is not public"

    def test_http_error_without_body(self):
        def handler(request):
            return httpx.Response(502, text="Bad gateway")

        with pytest.raises(PlatformApiError) as excinfo:
            make_client(handler).get("/thing")

        assert excinfo.value.platform_message is None
        assert "502" in excinfo.value.detail

    def test_unreadable_body(self):
        def handler(request):
            return httpx.Response(200, text="<html></html>")

        with pytest.raises(PlatformApiError) as excinfo:
            make_client(handler).get("/thing")

        assert excinfo.value.code == "invalid_response"

    def test_transport_error(self):
        def handler(request):
            msg = "connection refused"
            raise httpx.ConnectError(msg, request=request)

        with pytest.raises(PlatformApiError) as excinfo:
            make_client(handler).get("/thing")

        assert excinfo.value.code == "transport_error"
        assert excinfo.value.platform_message is None


@pytest.mark.parametrize(
    ("body", "expected"),
    [
        ({"error": "Boom"}, "Boom"),
        ({"message": "  Spaced  "}, "Spaced"),
        ({"error": {"message": "Nested"}}, "Nested"),
        ({"detail": "Not found."}, "Not found."),
        ({"error": ""}, None),
        (["not", "a", "dict"], None),
    ],
)
def test_extract_error_message(body, expected):
    assert extract_error_message(body) == expected

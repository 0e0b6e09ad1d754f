"""
Shared helper utilities for Django/HTMX powered views.
"""

import json
from http import HTTPStatus

from django.http import HttpResponse


def hx_trigger_response(
    message: str | None = None,
    level: str = "success",
    *,
    status_code: int = HTTPStatus.NO_CONTENT,
    close_modal: str | None = None,
    extra_payload: dict[str, object] | None = None,
) -> HttpResponse:
    """
    Answer an HTMX request with client-side events only.

    The ``HX-Trigger`` header carries the domain events in ``extra_payload``,
    a ``toast`` when ``message`` is given and ``close-modal`` naming the modal
    element to dismiss. No header is sent when there is nothing to trigger.
    """
    events: dict[str, object] = dict(extra_payload or {})
    if message:
        events.setdefault("toast", {"level": level, "message": str(message)})
    if close_modal:
        events["close-modal"] = close_modal

    response = HttpResponse(status=status_code)
    if events:
        response["HX-Trigger"] = json.dumps(events)
    return response

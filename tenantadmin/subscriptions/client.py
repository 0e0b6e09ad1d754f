"""
Plan-Assignment API collaborator.

Submits a finished wizard to the subscription service. When a receipt is
attached the call is multipart: the JSON payload travels in a ``request``
part next to the ``receipt`` file; otherwise the payload is the JSON body.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

from tenantadmin.core.api_client import ApiEnvelope
from tenantadmin.core.api_client import PlatformApiClient
from tenantadmin.subscriptions.receipts import ReceiptAttachment
from tenantadmin.subscriptions.receipts import read_receipt

if TYPE_CHECKING:
    from tenantadmin.subscriptions.payloads import AssignPlanRequest
    from tenantadmin.subscriptions.payloads import ExtendPlanRequest

logger = logging.getLogger(__name__)


class PlanAssignmentClient:
    ASSIGN_PATH = "/api/subscriptions/tenants/{tenant_id}/assign-plan"
    EXTEND_PATH = "/api/subscriptions/tenants/{tenant_id}/extend-plan"

    def __init__(self, api: PlatformApiClient):
        self.api = api

    def assign_plan(
        self,
        tenant_id: str,
        request: AssignPlanRequest,
        receipt: ReceiptAttachment | None = None,
    ) -> ApiEnvelope:
        return self._send(self.ASSIGN_PATH.format(tenant_id=tenant_id), request, receipt)

    def extend_plan(
        self,
        tenant_id: str,
        request: ExtendPlanRequest,
        receipt: ReceiptAttachment | None = None,
    ) -> ApiEnvelope:
        return self._send(self.EXTEND_PATH.format(tenant_id=tenant_id), request, receipt)

    def _send(
        self,
        path: str,
        request: AssignPlanRequest,
        receipt: ReceiptAttachment | None,
    ) -> ApiEnvelope:
        payload = request.to_payload()
        if receipt is None:
            logger.info("POST %s (plan %s)", path, request.plan_id)
            return self.api.post(path, json=payload)

        logger.info(
            "POST %s (plan %s) with receipt %s",
            path,
            request.plan_id,
            receipt.name,
        )
        files = {
            "request": (None, json.dumps(payload), "application/json"),
            "receipt": (receipt.name, read_receipt(receipt), receipt.content_type),
        }
        return self.api.post(path, files=files)

"""
Constants for the plan assignment and extension wizards.

The values double as wire values for the platform API, so they must stay in
sync with what the subscription service accepts.
"""

from django.db import models
from django.utils.translation import gettext_lazy as _


class InvoiceType(models.TextChoices):
    """
    How the tenant is invoiced for the period.

    STANDARD invoices are post-paid and carry a due date unless a receipt
    already covers the total. PREPAYE invoices are paid up front and may or
    may not be "comptabilisé" (tracked with a price and tax).
    """

    STANDARD = "STANDARD", _("Standard invoicing")
    PREPAYE = "PREPAYE", _("Prepaid invoicing")


class BillingMethod(models.TextChoices):
    MONTHLY = "MONTHLY", _("Monthly")
    YEARLY = "YEARLY", _("Yearly")
    CUSTOM = "CUSTOM", _("Custom period")


class PaymentMethod(models.TextChoices):
    CREDIT_CARD = "CREDIT_CARD", _("Credit card")
    BANK_TRANSFER = "BANK_TRANSFER", _("Bank transfer")
    CHECK = "CHECK", _("Check")
    CASH = "CASH", _("Cash")
    PAYPAL = "PAYPAL", _("PayPal")


class PaymentStatus(models.TextChoices):
    PAID = "PAID", _("Paid")
    PENDING = "PENDING", _("Pending")
    FAILED = "FAILED", _("Failed")


class WizardMode(models.TextChoices):
    """Which wizard is running: first assignment or extension of a plan."""

    ASSIGN = "ASSIGN", _("Assign plan")
    EXTEND = "EXTEND", _("Extend plan")


# Steps are numbered from 1; both wizards have five.
FIRST_STEP = 1
LAST_STEP = 5

# Manual grace period bounds (days, inclusive). Extensions may cover long
# contracts, hence the wider upper bound.
ASSIGN_GRACE_DAYS_MIN = 1
ASSIGN_GRACE_DAYS_MAX = 90
EXTEND_GRACE_DAYS_MIN = 1
EXTEND_GRACE_DAYS_MAX = 365

# Receipt uploads
RECEIPT_MAX_BYTES = 2 * 1024 * 1024
RECEIPT_ALLOWED_CONTENT_TYPES = ("application/pdf", "image/jpeg", "image/png")
RECEIPT_ALLOWED_EXTENSIONS = (".pdf", ".jpg", ".jpeg", ".png")

SUBMIT_FALLBACK_MESSAGES = {
    WizardMode.ASSIGN: _("The plan could not be assigned. Please try again."),
    WizardMode.EXTEND: _("The plan could not be extended. Please try again."),
}

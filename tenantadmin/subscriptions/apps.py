from django.apps import AppConfig


class SubscriptionsConfig(AppConfig):
    """
    Plan assignment and extension wizards for tenants.

    The app has no models: plans, tenants and invoices are owned by the
    platform API.
    """

    name = "tenantadmin.subscriptions"
    verbose_name = "Subscriptions"

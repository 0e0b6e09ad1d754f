from django.apps import AppConfig


class CoreConfig(AppConfig):
    name = "tenantadmin.core"
    verbose_name = "Core"

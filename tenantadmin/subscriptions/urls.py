from django.urls import path

from tenantadmin.subscriptions import views

app_name = "subscriptions"

urlpatterns = [
    path(
        "tenants/<str:tenant_id>/assign-plan/",
        views.AssignPlanWizardView.as_view(),
        name="assign_plan",
    ),
    path(
        "tenants/<str:tenant_id>/extend-plan/",
        views.ExtendPlanWizardView.as_view(),
        name="extend_plan",
    ),
    path(
        "plan-wizards/<str:wizard_id>/",
        views.PlanWizardStepView.as_view(),
        name="plan_wizard_step",
    ),
]

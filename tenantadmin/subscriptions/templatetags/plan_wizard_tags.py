from django import template

from tenantadmin.subscriptions.pricing import format_money

register = template.Library()


@register.filter
def money(amount, currency=""):
    """Render an amount rounded to cents, e.g. ``{{ pricing.total_price|money:"MAD" }}``."""
    return format_money(amount, currency)

"""Payment URL configuration."""

from __future__ import annotations

from django.urls import path

from modules.payments.views import payment_webhook

urlpatterns = [
    path("payments/webhook/", payment_webhook, name="payment-webhook"),
]

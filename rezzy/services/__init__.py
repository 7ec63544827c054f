"""Service layer modules for the Rezzy dashboard API."""

from . import bootstrap_service, gateway_client, onboarding_service, plan_gate, wizard_service

__all__ = [
    "bootstrap_service",
    "gateway_client",
    "onboarding_service",
    "plan_gate",
    "wizard_service",
]

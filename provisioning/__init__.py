"""Checkout provisioning service: Stripe checkout events to Jira records."""

__version__ = "0.1.0"

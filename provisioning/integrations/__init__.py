"""External integrations: Jira APIs and Stripe webhooks."""
from .jira_client import JiraAPIError, JiraClient

__all__ = ["JiraAPIError", "JiraClient"]

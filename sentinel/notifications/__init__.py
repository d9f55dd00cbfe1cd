from sentinel.notifications.push import ApprovalNotification, PushGateway
from sentinel.notifications.webhook import WebhookClient

__all__ = ["ApprovalNotification", "PushGateway", "WebhookClient"]

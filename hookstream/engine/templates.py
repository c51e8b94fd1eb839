"""
HookStream provider templates — preconfigured webhook definitions.

Each template carries the provider's auth scheme and a sample payload used by
``WebhookService.simulate`` and the ``hookstream simulate`` command.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import Field

from hookstream.engine.models import AuthConfig, WebhookDefinition, _WireModel


class WebhookTemplate(_WireModel):
    """Preset for a well-known webhook provider."""

    id: str
    name: str
    description: str = ""
    provider: str
    auth_config: AuthConfig = Field(default_factory=AuthConfig)
    auto_acknowledge: bool = True
    buffer_capacity: Optional[int] = Field(default=None, gt=0)
    sample_payload: Any = None
    documentation: str = ""


_CATALOG: List[Dict[str, Any]] = [
    {
        "id": "github-webhook",
        "name": "GitHub Webhook",
        "description": "Receive events from GitHub repositories",
        "provider": "github",
        "auth_config": {"type": "signature", "header": "X-Hub-Signature-256", "algorithm": "sha256"},
        "sample_payload": {
            "event": "push",
            "repository": {"name": "my-repo", "full_name": "user/my-repo", "stars": 42},
            "pusher": {"name": "developer", "email": "dev@example.com"},
            "commits": [
                {
                    "id": "abc123",
                    "message": "Fix bug in production",
                    "author": {"name": "developer"},
                    "timestamp": "2024-01-15T10:30:00Z",
                },
            ],
        },
        "documentation": "Configure GitHub webhook in repository Settings > Webhooks",
    },
    {
        "id": "stripe-webhook",
        "name": "Stripe Webhook",
        "description": "Receive payment and subscription events from Stripe",
        "provider": "stripe",
        "auth_config": {"type": "signature", "header": "Stripe-Signature", "algorithm": "sha256"},
        "sample_payload": {
            "type": "payment_intent.succeeded",
            "data": {
                "object": {
                    "id": "pi_123",
                    "amount": 2000,
                    "currency": "usd",
                    "status": "succeeded",
                    "customer": "cus_123",
                },
            },
            "created": 1705314600,
        },
        "documentation": "Configure Stripe webhook in Dashboard > Developers > Webhooks",
    },
    {
        "id": "slack-webhook",
        "name": "Slack Webhook",
        "description": "Receive events from Slack workspace",
        "provider": "slack",
        "auth_config": {"type": "shared_secret"},
        "sample_payload": {
            "type": "message",
            "event": {
                "type": "message",
                "channel": "C123456",
                "user": "U123456",
                "text": "Hello from Slack!",
                "ts": "1705314600000",
            },
            "team_id": "T123456",
        },
        "documentation": "Create Slack app at api.slack.com and enable Event Subscriptions",
    },
    {
        "id": "shopify-webhook",
        "name": "Shopify Webhook",
        "description": "Receive order and product events from Shopify",
        "provider": "shopify",
        "auth_config": {"type": "signature", "header": "X-Shopify-Hmac-SHA256", "algorithm": "sha256"},
        "sample_payload": {
            "event": "orders/create",
            "id": 820982911946154500,
            "email": "customer@example.com",
            "total_price": "199.99",
            "currency": "USD",
            "line_items": [{"title": "Product Name", "quantity": 2, "price": "99.99"}],
            "created_at": "2024-01-15T10:30:00Z",
        },
        "documentation": "Configure webhooks in Shopify Admin > Settings > Notifications",
    },
    {
        "id": "twilio-webhook",
        "name": "Twilio Webhook",
        "description": "Receive SMS and voice call events from Twilio",
        "provider": "twilio",
        "auth_config": {"type": "signature", "header": "X-Twilio-Signature", "algorithm": "sha1"},
        "sample_payload": {
            "MessageSid": "SM123456789",
            "From": "+15551234567",
            "To": "+15559876543",
            "Body": "Hello from Twilio",
            "MessageStatus": "received",
            "NumMedia": "0",
            "ApiVersion": "2010-04-01",
        },
        "documentation": "Configure webhook URL in Twilio Console for phone numbers or messaging services",
    },
    {
        "id": "sendgrid-webhook",
        "name": "SendGrid Webhook",
        "description": "Receive email delivery and engagement events",
        "provider": "sendgrid",
        "auth_config": {"type": "bearer"},
        "sample_payload": [
            {
                "email": "recipient@example.com",
                "event": "delivered",
                "timestamp": 1705314600,
                "sg_message_id": "msg123",
                "smtp_id": "<smtp123@example.com>",
            },
        ],
        "documentation": "Configure Event Webhook in SendGrid Settings > Mail Settings > Event Webhook",
    },
    {
        "id": "webhook-site",
        "name": "Webhook.site Integration",
        "description": "Test webhooks with webhook.site proxy",
        "provider": "webhook-site",
        "sample_payload": {
            "event": "test",
            "timestamp": 1705314600000,
            "data": {"message": "Test webhook from webhook.site", "source": "webhook-connector"},
        },
        "documentation": "Visit webhook.site to generate a unique URL for testing",
    },
    {
        "id": "zapier-webhook",
        "name": "Zapier Webhook",
        "description": "Receive events from Zapier automation",
        "provider": "zapier",
        "sample_payload": {
            "event": "zap_triggered",
            "zap_id": "zap_123",
            "data": {"field1": "value1", "field2": "value2"},
            "timestamp": "2024-01-15T10:30:00Z",
        },
        "documentation": "Use Webhooks by Zapier action to send data to your endpoint",
    },
    {
        "id": "discord-webhook",
        "name": "Discord Webhook",
        "description": "Receive events from Discord server",
        "provider": "discord",
        "sample_payload": {
            "type": "message",
            "content": "New message in Discord",
            "author": {"id": "123456789", "username": "User", "discriminator": "1234"},
            "channel_id": "987654321",
            "timestamp": "2024-01-15T10:30:00Z",
        },
        "documentation": "Create webhook in Discord Server Settings > Integrations",
    },
    {
        "id": "custom-webhook",
        "name": "Custom Webhook",
        "description": "Generic webhook for any service",
        "provider": "custom",
        "buffer_capacity": 100,
        "sample_payload": {"event": "custom_event", "timestamp": 1705314600000, "data": {}},
        "documentation": "Configure custom webhook to match your service requirements",
    },
]

WEBHOOK_TEMPLATES: List[WebhookTemplate] = [WebhookTemplate.model_validate(t) for t in _CATALOG]


def list_templates() -> List[WebhookTemplate]:
    return [t.model_copy(deep=True) for t in WEBHOOK_TEMPLATES]


def get_template(template_id: str) -> Optional[WebhookTemplate]:
    """Look up a template by id (``"stripe-webhook"``) or provider (``"stripe"``)."""
    for template in WEBHOOK_TEMPLATES:
        if template.id == template_id or template.provider == template_id:
            return template.model_copy(deep=True)
    return None


def find_template_for(definition: WebhookDefinition) -> Optional[WebhookTemplate]:
    """Template whose provider is the first word of the definition's name."""
    words = definition.name.split(" ")
    provider = words[0].lower() if words else ""
    for template in WEBHOOK_TEMPLATES:
        if template.provider == provider:
            return template.model_copy(deep=True)
    return None


def definition_from_template(
    template_id: str,
    webhook_id: str,
    name: Optional[str] = None,
    **overrides: Any,
) -> WebhookDefinition:
    """
    Build a WebhookDefinition preconfigured from a template.

    Raises ValueError for an unknown template id.
    """
    template = get_template(template_id)
    if template is None:
        raise ValueError(f"Unknown webhook template: {template_id}")

    fields: Dict[str, Any] = {
        "id": webhook_id,
        "name": name or template.name,
        "description": template.description,
        "auth_config": template.auth_config,
        "auto_acknowledge": template.auto_acknowledge,
    }
    if template.buffer_capacity is not None:
        fields["buffer_capacity"] = template.buffer_capacity
    fields.update(overrides)
    return WebhookDefinition(**fields)

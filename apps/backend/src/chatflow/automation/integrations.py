from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class WebhookVariable:
    name: str
    description: str
    type: str
    example: str

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "type": self.type,
            "example": self.example,
        }


@dataclass
class WebhookEvent:
    id: str
    name: str
    description: str
    event_type: str
    trigger_description: str
    variables: list[WebhookVariable] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "event_type": self.event_type,
            "trigger_description": self.trigger_description,
            "variables": [v.to_dict() for v in self.variables],
        }


@dataclass
class Integration:
    id: str
    name: str
    description: str
    category: str
    webhook_url_pattern: str
    auth_required: bool
    webhooks: list[WebhookEvent] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "webhook_url_pattern": self.webhook_url_pattern,
            "auth_required": self.auth_required,
            "webhooks": [w.to_dict() for w in self.webhooks],
        }


def _var(name: str, description: str, example: str, type_: str = "string") -> WebhookVariable:
    return WebhookVariable(name=name, description=description, type=type_, example=example)


INTEGRATIONS: list[Integration] = [
    # --- Shopify ---
    Integration(
        id="shopify",
        name="Shopify",
        description="E-commerce store automation",
        category="e-commerce",
        webhook_url_pattern="https://your-domain.com/webhooks/shopify/{event}",
        auth_required=True,
        webhooks=[
            WebhookEvent(
                id="order_created",
                name="New Order",
                description="Triggered when a new order is placed",
                event_type="orders/create",
                trigger_description="When a customer places a new order on your Shopify store",
                variables=[
                    _var("order_number", "Order number", "#1001"),
                    _var("customer_name", "Customer full name", "John Doe"),
                    _var("customer_phone", "Customer phone number", "+1234567890"),
                    _var("total_amount", "Order total amount", "29.99", "number"),
                    _var("currency", "Order currency", "USD"),
                    _var("item_count", "Number of items", "3", "number"),
                ],
            ),
            WebhookEvent(
                id="order_shipped",
                name="Order Shipped",
                description="Triggered when an order is fulfilled",
                event_type="orders/fulfilled",
                trigger_description="When an order is marked as fulfilled and shipped",
                variables=[
                    _var("order_number", "Order number", "#1001"),
                    _var("tracking_number", "Tracking number", "1Z999AA1234567890"),
                    _var("tracking_url", "Tracking URL", "https://tracking.example.com"),
                    _var("shipping_method", "Shipping method", "Standard Shipping"),
                ],
            ),
            WebhookEvent(
                id="cart_abandoned",
                name="Abandoned Cart",
                description="Triggered when a checkout is created but not completed",
                event_type="checkouts/create",
                trigger_description="When a customer starts checkout and leaves without paying",
                variables=[
                    _var("cart_total", "Cart total amount", "49.99", "number"),
                    _var("customer_email", "Customer email", "john@example.com"),
                    _var("customer_phone", "Customer phone", "+1234567890"),
                    _var("item_count", "Number of items in cart", "2", "number"),
                ],
            ),
            WebhookEvent(
                id="product_low_stock",
                name="Low Stock",
                description="Triggered when a product's inventory runs low",
                event_type="products/update",
                trigger_description="When product stock drops below the threshold",
                variables=[
                    _var("product_name", "Product name", "Amazing Product"),
                    _var("stock_quantity", "Current stock quantity", "2", "number"),
                    _var("product_id", "Product ID", "123"),
                ],
            ),
        ],
    ),
    # --- WooCommerce ---
    Integration(
        id="woocommerce",
        name="WooCommerce",
        description="WordPress e-commerce automation",
        category="e-commerce",
        webhook_url_pattern="https://your-domain.com/webhooks/woocommerce/{event}",
        auth_required=True,
        webhooks=[
            WebhookEvent(
                id="order_created",
                name="New Order",
                description="Triggered when a new order is created",
                event_type="order.created",
                trigger_description="When a customer places an order in your WooCommerce store",
                variables=[
                    _var("order_id", "Order ID", "123"),
                    _var("customer_name", "Customer full name", "Jane Smith"),
                    _var("customer_phone", "Customer phone number", "+1234567890"),
                    _var("order_total", "Order total amount", "35.00", "number"),
                    _var("order_status", "Order status", "processing"),
                ],
            ),
            WebhookEvent(
                id="payment_complete",
                name="Payment Complete",
                description="Triggered when an order payment succeeds",
                event_type="order.payment_complete",
                trigger_description="When payment for an order is completed",
                variables=[
                    _var("order_id", "Order ID", "123"),
                    _var("payment_method", "Payment method used", "stripe"),
                    _var("transaction_id", "Transaction ID", "txn_abc123"),
                    _var("amount", "Payment amount", "35.00", "number"),
                ],
            ),
        ],
    ),
    # --- HubSpot ---
    Integration(
        id="hubspot",
        name="HubSpot",
        description="CRM and marketing automation",
        category="crm",
        webhook_url_pattern="https://your-domain.com/webhooks/hubspot/{event}",
        auth_required=True,
        webhooks=[
            WebhookEvent(
                id="contact_created",
                name="New Contact",
                description="Triggered when a contact is created",
                event_type="contact.creation",
                trigger_description="When a new contact is added to HubSpot",
                variables=[
                    _var("contact_name", "Contact full name", "John Doe"),
                    _var("contact_email", "Contact email", "john@example.com"),
                    _var("contact_phone", "Contact phone", "+1234567890"),
                    _var("company_name", "Company name", "Acme Corp"),
                    _var("lifecycle_stage", "Contact lifecycle stage", "lead"),
                ],
            ),
            WebhookEvent(
                id="deal_created",
                name="New Deal",
                description="Triggered when a deal is created",
                event_type="deal.creation",
                trigger_description="When a new deal is opened in the pipeline",
                variables=[
                    _var("deal_name", "Deal name", "Big Deal"),
                    _var("deal_amount", "Deal amount", "5000", "number"),
                    _var("deal_stage", "Deal stage", "appointmentscheduled"),
                    _var("close_date", "Expected close date", "2024-12-31"),
                ],
            ),
            WebhookEvent(
                id="deal_stage_change",
                name="Deal Stage Changed",
                description="Triggered when a deal moves to another stage",
                event_type="deal.propertyChange",
                trigger_description="When a deal's pipeline stage changes",
                variables=[
                    _var("deal_id", "Deal ID", "456"),
                    _var("new_stage", "New deal stage", "closedwon"),
                    _var("previous_stage", "Previous deal stage", "negotiation"),
                ],
            ),
        ],
    ),
    # --- Stripe ---
    Integration(
        id="stripe",
        name="Stripe",
        description="Payment processing automation",
        category="payments",
        webhook_url_pattern="https://your-domain.com/webhooks/stripe",
        auth_required=True,
        webhooks=[
            WebhookEvent(
                id="payment_succeeded",
                name="Payment Succeeded",
                description="Triggered when a payment succeeds",
                event_type="payment_intent.succeeded",
                trigger_description="When a customer's payment is processed successfully",
                variables=[
                    _var("payment_id", "Payment ID", "pi_1234567890"),
                    _var("amount", "Payment amount (in cents)", "2999", "number"),
                    _var("currency", "Payment currency", "usd"),
                    _var("customer_id", "Stripe customer ID", "cus_1234567890"),
                ],
            ),
            WebhookEvent(
                id="payment_failed",
                name="Payment Failed",
                description="Triggered when a payment fails",
                event_type="payment_intent.payment_failed",
                trigger_description="When a customer's payment is declined",
                variables=[
                    _var("payment_id", "Payment ID", "pi_1234567890"),
                    _var("amount", "Payment amount (in cents)", "2999", "number"),
                    _var("error_message", "Payment failure reason", "Your card was declined."),
                ],
            ),
            WebhookEvent(
                id="subscription_created",
                name="New Subscription",
                description="Triggered when a subscription starts",
                event_type="customer.subscription.created",
                trigger_description="When a customer subscribes to a plan",
                variables=[
                    _var("subscription_id", "Subscription ID", "sub_1234567890"),
                    _var("customer_id", "Customer ID", "cus_1234567890"),
                    _var("plan_amount", "Plan amount (in cents)", "999", "number"),
                    _var("plan_interval", "Plan interval", "month"),
                ],
            ),
        ],
    ),
    # --- Zendesk ---
    Integration(
        id="zendesk",
        name="Zendesk",
        description="Customer support automation",
        category="support",
        webhook_url_pattern="https://your-domain.com/webhooks/zendesk/{event}",
        auth_required=True,
        webhooks=[
            WebhookEvent(
                id="ticket_created",
                name="New Ticket",
                description="Triggered when a support ticket is created",
                event_type="ticket.created",
                trigger_description="When a customer opens a new support ticket",
                variables=[
                    _var("ticket_id", "Ticket ID", "123"),
                    _var("ticket_subject", "Ticket subject", "Need help with order"),
                    _var("ticket_priority", "Ticket priority", "normal"),
                    _var("requester_id", "Customer ID who created ticket", "456"),
                ],
            ),
            WebhookEvent(
                id="ticket_solved",
                name="Ticket Solved",
                description="Triggered when a ticket is solved",
                event_type="ticket.solved",
                trigger_description="When an agent marks a ticket as solved",
                variables=[
                    _var("ticket_id", "Ticket ID", "123"),
                    _var("ticket_subject", "Ticket subject", "Need help with order"),
                    _var("assignee_id", "Agent who solved the ticket", "789"),
                    _var("solved_at", "When ticket was solved", "2024-01-15T10:30:00Z"),
                ],
            ),
        ],
    ),
    # --- Mailchimp ---
    Integration(
        id="mailchimp",
        name="Mailchimp",
        description="Email marketing automation",
        category="marketing",
        webhook_url_pattern="https://your-domain.com/webhooks/mailchimp/{event}",
        auth_required=False,
        webhooks=[
            WebhookEvent(
                id="campaign_sent",
                name="Campaign Sent",
                description="Triggered when an email campaign is sent",
                event_type="campaign.sent",
                trigger_description="When a campaign finishes sending",
                variables=[
                    _var("campaign_id", "Campaign ID", "abc123"),
                    _var("subject_line", "Email subject line", "Monthly Newsletter"),
                    _var("emails_sent", "Number of emails sent", "1500", "number"),
                    _var("send_time", "When campaign was sent", "2024-01-15T09:00:00Z"),
                ],
            ),
            WebhookEvent(
                id="subscriber_added",
                name="New Subscriber",
                description="Triggered when someone joins a list",
                event_type="list.subscribe",
                trigger_description="When a new subscriber is added to a mailing list",
                variables=[
                    _var("subscriber_email", "Subscriber email", "subscriber@example.com"),
                    _var("first_name", "Subscriber first name", "John"),
                    _var("last_name", "Subscriber last name", "Doe"),
                    _var("list_id", "Mailing list ID", "def456"),
                ],
            ),
        ],
    ),
]


def get_integration(integration_id: str) -> Optional[Integration]:
    return next((i for i in INTEGRATIONS if i.id == integration_id), None)


def get_webhook_events(integration_id: str) -> list[WebhookEvent]:
    integration = get_integration(integration_id)
    return integration.webhooks if integration else []


def get_webhook_event(integration_id: str, event_id: str) -> Optional[WebhookEvent]:
    return next((e for e in get_webhook_events(integration_id) if e.id == event_id), None)


def event_variables(integration_id: str, event_id: str, payload: dict[str, Any]) -> dict[str, str]:
    """Values of the event's declared variables, taken from ``payload`` by exact name.

    Keys the event does not declare are ignored; declared names missing from
    the payload are left out so the resolver keeps their tokens literal.
    """
    event = get_webhook_event(integration_id, event_id)
    if event is None:
        raise KeyError(f"Unknown event {integration_id}/{event_id}")
    values: dict[str, str] = {}
    for variable in event.variables:
        value = payload.get(variable.name)
        if value is not None and value != "":
            values[variable.name] = str(value)
    return values

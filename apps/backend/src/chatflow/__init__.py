"""ChatFlow: build and preview WhatsApp-style chat automations."""

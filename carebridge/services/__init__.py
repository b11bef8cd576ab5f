"""CareBridge serverless services."""

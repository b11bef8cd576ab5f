"""Shared building blocks for CareBridge services."""

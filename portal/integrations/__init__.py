"""Outbound integrations (payment gateway)."""

"""Core helpers shared by the auth services: errors and localized messages."""

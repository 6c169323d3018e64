"""Business logic services for Chryso Forms."""

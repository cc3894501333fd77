"""Request middleware for the gateway."""

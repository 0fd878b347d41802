"""HTTP API for the payment service."""

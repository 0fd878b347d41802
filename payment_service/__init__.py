"""Payment service: payment creation, outcome resolution and payment queries."""

__version__ = "1.0.0"

"""Deploy Portal - provisions and manages per-client storefront deployments."""

__version__ = "0.1.0"

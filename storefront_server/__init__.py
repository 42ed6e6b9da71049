"""Storefront MCP Server: cart, checkout and order tracking for the storefront REST API."""

__version__ = "0.1.0"

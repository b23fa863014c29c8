"""Store service: catalog, orders and payment confirmation over a JSON API."""

"""Adapters to external data sources (GeoIP databases)."""

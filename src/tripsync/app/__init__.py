"""Marketplace data models, remote store gateway, cache and services."""

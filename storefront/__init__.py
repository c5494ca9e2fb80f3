"""Storefront orders service."""

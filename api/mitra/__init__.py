"""Delivery Mitra — delivery partner dashboard."""

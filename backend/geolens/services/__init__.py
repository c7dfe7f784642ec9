"""Clients and helpers for external collaborators (backend, WMS)."""

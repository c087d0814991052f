"""Tracker synchronisation backend: rate resolution and paged tracker access."""

"""Temporal workflows, activities, interceptors and client/worker wiring."""

"""Foundational layer: configuration, logging, errors, retry."""

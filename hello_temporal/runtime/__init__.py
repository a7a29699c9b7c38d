"""Process lifecycle: preflight checks and shutdown coordination."""

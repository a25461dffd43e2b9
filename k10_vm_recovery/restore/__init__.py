"""Restore workflow: restore point model, naming, transforms and orchestration."""

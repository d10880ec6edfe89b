"""Durable services: session storage, git and workspace reconciliation."""

"""Persistent models and services shared across the runtime."""

"""Shared models, utilities, logging and the local durable queue."""

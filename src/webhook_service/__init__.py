"""Durable webhook event delivery for the file storage backend."""

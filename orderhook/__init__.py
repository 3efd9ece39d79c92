"""Signed order webhook ingestion and push notification delivery."""

"""Viewing-progress record store with content-identity reconciliation."""

"""Core services: authentication, authorization and account management."""

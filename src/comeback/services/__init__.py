"""Shared services: database access, authentication, analytics and rate limiting."""

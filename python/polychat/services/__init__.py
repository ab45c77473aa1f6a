"""Business logic services.

This package contains service-layer functions that implement business logic.
Services are called by route handlers and orchestrate database operations;
modules are imported directly (e.g. `from polychat.services import chats`).
"""

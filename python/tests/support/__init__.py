"""Test-only support code (verifiers, fake LLM routers)."""

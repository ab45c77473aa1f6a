#!/usr/bin/env python
"""Seed the development database with the model registry.

Registers a handful of gateway models and points each of the 12 categories
at one of them, so automatic selection works on a fresh database.

Constraints:
- Refuses to run in staging or prod (POLYCHAT_ENV check)
- Idempotent: models are upserted by key, mappings overwritten
- Never runs automatically (manual invocation only)

Usage:
    cd python && DATABASE_URL=... python ../scripts/seed_dev.py
"""

import os
import sys

SEED_MODELS = (
    # key, display name, provider, context tokens, pdf, image, reasoning
    ("openai/gpt-4o", "GPT-4o", "openai", 128_000, True, True, False),
    ("openai/gpt-4o-mini", "GPT-4o mini", "openai", 128_000, True, True, False),
    ("anthropic/claude-sonnet-4", "Claude Sonnet 4", "anthropic", 200_000, True, True, True),
    ("google/gemini-2.5-flash", "Gemini 2.5 Flash", "google", 1_048_576, True, True, True),
    ("deepseek/deepseek-chat", "DeepSeek V3", "deepseek", 64_000, False, False, False),
)

SEED_BEST_MODELS = {
    "Programming": "anthropic/claude-sonnet-4",
    "Roleplay": "deepseek/deepseek-chat",
    "Marketing": "openai/gpt-4o",
    "SEO": "openai/gpt-4o-mini",
    "Technology": "anthropic/claude-sonnet-4",
    "Science": "google/gemini-2.5-flash",
    "Translation": "google/gemini-2.5-flash",
    "Legal": "openai/gpt-4o",
    "Finance": "openai/gpt-4o",
    "Health": "anthropic/claude-sonnet-4",
    "Trivia": "openai/gpt-4o-mini",
    "Academia": "google/gemini-2.5-flash",
}


def main():
    # 1. Environment check (hard fail in staging/prod)
    polychat_env = os.getenv("POLYCHAT_ENV", "local")
    if polychat_env not in ("local", "test"):
        print(f"ERROR: seed_dev.py refuses to run in POLYCHAT_ENV={polychat_env}")
        sys.exit(1)

    # 2. Check DATABASE_URL
    if not os.getenv("DATABASE_URL"):
        print("ERROR: DATABASE_URL environment variable must be set")
        sys.exit(1)

    from polychat.db.models import Category
    from polychat.db.session import get_session_factory, transaction
    from polychat.services.models import set_best_model, upsert_model

    db = get_session_factory()()
    try:
        # 3. Idempotent seeding
        with transaction(db):
            for key, name, provider, context, pdf, image, reasoning in SEED_MODELS:
                upsert_model(
                    db,
                    key=key,
                    display_name=name,
                    provider=provider,
                    max_context_tokens=context,
                    supports_pdf=pdf,
                    supports_image=image,
                    supports_reasoning=reasoning,
                )
            for category, key in SEED_BEST_MODELS.items():
                set_best_model(db, Category(category), key)
    finally:
        db.close()

    print(f"Seeded {len(SEED_MODELS)} models and {len(SEED_BEST_MODELS)} category mappings")


if __name__ == "__main__":
    main()

"""Tests for the model registry routes and service.

Tests cover:
- GET /models lists every registered model
- GET /best-models lists all categories, null where unmapped
- Registry writes used by seeding: upsert by key and best-model assignment
"""

import pytest

from polychat.db.models import AIModel, Category
from polychat.errors import ApiError, ApiErrorCode
from polychat.services import models as models_service
from tests.factories import create_model, seed_registry, set_best


class TestListModels:
    def test_lists_registry_ordered_by_provider(self, auth_client, db_session):
        create_model(db_session, "openai/gpt-4o", "GPT-4o")
        create_model(db_session, "anthropic/claude-3.5-sonnet", "Claude 3.5 Sonnet")
        create_model(db_session, "google/gemini-pro", "Gemini Pro", supports_pdf=True)

        response = auth_client.get("/models")

        assert response.status_code == 200
        data = response.json()["data"]
        assert [m["key"] for m in data] == [
            "anthropic/claude-3.5-sonnet",
            "google/gemini-pro",
            "openai/gpt-4o",
        ]
        gemini = data[1]
        assert gemini["provider"] == "google"
        assert gemini["supports_pdf"] is True
        assert gemini["max_context_tokens"] == 128000

    def test_requires_authentication(self, client):
        assert client.get("/models").status_code == 401


class TestBestModels:
    def test_every_category_is_listed(self, auth_client, db_session):
        model = create_model(db_session)
        set_best(db_session, Category.legal, model)

        data = auth_client.get("/best-models").json()["data"]

        assert [row["category"] for row in data] == [c.value for c in Category]
        by_category = {row["category"]: row["model"] for row in data}
        assert by_category["Legal"]["key"] == "openai/gpt-4o"
        assert by_category["Finance"] is None

    def test_deleted_model_reads_as_unmapped(self, auth_client, db_session):
        model = create_model(db_session)
        set_best(db_session, Category.trivia, model)
        db_session.delete(model)
        db_session.commit()

        data = auth_client.get("/best-models").json()["data"]

        assert {row["category"]: row["model"] for row in data}["Trivia"] is None


class TestRegistryService:
    def test_get_model_by_key(self, db_session):
        seed_registry(db_session)

        assert models_service.get_model_by_key(db_session, "openai/gpt-4o").display_name == "GPT-4o"
        assert models_service.get_model_by_key(db_session, "acme/none") is None
        assert models_service.get_model_by_key(db_session, "") is None

    def test_best_model_for_category(self, db_session):
        registry = seed_registry(db_session)

        best = models_service.get_best_model_for_category(db_session, Category.programming)

        assert best.id == registry["coder"].id

    def test_upsert_updates_existing_key(self, db_session):
        create_model(db_session, "openai/gpt-4o", "GPT-4o")

        models_service.upsert_model(
            db_session,
            key="openai/gpt-4o",
            display_name="GPT-4o (2024-08)",
            provider="openai",
            max_context_tokens=64000,
            supports_image=True,
        )
        db_session.commit()

        rows = db_session.query(AIModel).filter_by(key="openai/gpt-4o").all()
        assert len(rows) == 1
        assert rows[0].display_name == "GPT-4o (2024-08)"
        assert rows[0].max_context_tokens == 64000
        assert rows[0].supports_image is True

    def test_set_best_model(self, db_session):
        create_model(db_session)

        result = models_service.set_best_model(db_session, Category.health, "openai/gpt-4o")
        db_session.commit()

        assert result.category == "Health"
        assert result.model.key == "openai/gpt-4o"
        mapping = models_service.get_best_model_mapping(db_session)
        assert mapping[Category.health].key == "openai/gpt-4o"
        assert mapping[Category.finance] is None

    def test_set_best_model_unknown_key(self, db_session):
        with pytest.raises(ApiError) as exc_info:
            models_service.set_best_model(db_session, Category.health, "acme/none")

        assert exc_info.value.code == ApiErrorCode.E_UNKNOWN_MODEL

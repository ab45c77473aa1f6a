"""Tests for the development seed script."""

from unittest.mock import patch

import pytest
from sqlalchemy import func, select

from polychat.db.models import AIModel, BestModel, Category
from polychat.services.models import get_best_model_for_category
from scripts import seed_dev


@pytest.fixture
def run_seed(session_factory, monkeypatch):
    monkeypatch.setenv("POLYCHAT_ENV", "test")
    monkeypatch.setenv("DATABASE_URL", "sqlite://")
    with patch("polychat.db.session.get_session_factory", return_value=session_factory):
        yield seed_dev.main


class TestSeedDev:
    def test_seeds_models_and_every_category(self, run_seed, db_session):
        run_seed()

        assert db_session.scalar(select(func.count()).select_from(AIModel)) == len(
            seed_dev.SEED_MODELS
        )
        for category in Category:
            model = get_best_model_for_category(db_session, category)
            assert model is not None
            assert model.key == seed_dev.SEED_BEST_MODELS[category.value]

    def test_is_idempotent(self, run_seed, db_session):
        run_seed()
        run_seed()

        assert db_session.scalar(select(func.count()).select_from(AIModel)) == len(
            seed_dev.SEED_MODELS
        )
        assert db_session.scalar(select(func.count()).select_from(BestModel)) == 12

    def test_refuses_to_run_in_prod(self, run_seed, monkeypatch, db_session):
        monkeypatch.setenv("POLYCHAT_ENV", "prod")

        with pytest.raises(SystemExit):
            run_seed()

        assert db_session.scalar(select(func.count()).select_from(AIModel)) == 0

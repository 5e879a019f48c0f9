"""
Smoke tests to verify project setup
Tests configuration, database initialization and dependency wiring
"""

import pytest

from src.app.config import Config, get_config, validate_config
from src.app.database import DatabaseManager
from src.app.dependencies import build_text_generator, create_dispatcher
from src.infrastructure.tasks.dispatch import CeleryDispatcher, InProcessDispatcher


class TestConfiguration:
    """Test configuration system"""

    def test_config_loads(self):
        """Test that configuration loads correctly"""
        config = get_config()
        assert config is not None
        assert config.pipeline.max_concurrent_jobs >= 1

    def test_config_validation(self):
        """Test configuration validation"""
        result = validate_config()

        # Should have valid structure even with warnings
        assert isinstance(result, dict)
        assert "valid" in result
        assert "errors" in result
        assert "warnings" in result

    def test_config_summary(self):
        """Test configuration summary generation"""
        summary = get_config().get_summary()

        assert "database" in summary
        assert "llm" in summary
        assert "pipeline" in summary
        assert "cache" in summary


class TestDatabase:
    """Test database initialization"""

    @pytest.mark.asyncio
    async def test_init_and_connect(self):
        manager = DatabaseManager(url="sqlite+aiosqlite:///:memory:")

        try:
            await manager.init_db()
            assert await manager.check_connection()
        finally:
            await manager.dispose()

    @pytest.mark.asyncio
    async def test_session_context(self):
        manager = DatabaseManager(url="sqlite+aiosqlite:///:memory:")

        try:
            async with manager.session() as session:
                assert session is not None
        finally:
            await manager.dispose()


class TestWiring:
    """Test dependency factories"""

    def test_missing_api_key_disables_generation(self, monkeypatch, tmp_path):
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
        config = Config(str(tmp_path / "missing.yaml"))

        assert build_text_generator(config) is None

    def test_default_dispatcher_is_in_process(self, monkeypatch, tmp_path):
        monkeypatch.delenv("PIPELINE_DISPATCHER", raising=False)
        config = Config(str(tmp_path / "missing.yaml"))

        assert isinstance(create_dispatcher(config), InProcessDispatcher)

    def test_celery_dispatcher_selected_by_config(self, monkeypatch, tmp_path):
        monkeypatch.setenv("PIPELINE_DISPATCHER", "celery")
        config = Config(str(tmp_path / "missing.yaml"))

        dispatcher = create_dispatcher(config)

        assert isinstance(dispatcher, CeleryDispatcher)
        assert dispatcher.queue == "analysis"

"""Environment configuration tests."""
import pytest

from primitive_runtime.config import DEFAULT_DB_PATH, RuntimeConfig


class TestRuntimeConfig:
    def test_defaults(self):
        config = RuntimeConfig.from_env({})
        assert config.db_path == DEFAULT_DB_PATH
        assert config.default_timeout_ms == 30000
        assert config.max_output_bytes == 1024 * 1024
        assert config.log_level == "INFO"

    def test_values_from_environment(self):
        config = RuntimeConfig.from_env(
            {
                "PRIMITIVE_RUNTIME_DB": "/tmp/p.db",
                "PRIMITIVE_RUNTIME_DEFAULT_TIMEOUT_MS": "500",
                "PRIMITIVE_RUNTIME_MAX_OUTPUT_BYTES": "2048",
                "PRIMITIVE_RUNTIME_LOG_LEVEL": "debug",
            }
        )
        assert config.db_path == "/tmp/p.db"
        assert config.default_timeout_ms == 500
        assert config.max_output_bytes == 2048
        assert config.log_level == "DEBUG"

    def test_blank_values_fall_back_to_defaults(self):
        config = RuntimeConfig.from_env({"PRIMITIVE_RUNTIME_DEFAULT_TIMEOUT_MS": " "})
        assert config.default_timeout_ms == 30000

    @pytest.mark.parametrize("raw", ["soon", "0", "-5"])
    def test_invalid_timeouts_are_rejected(self, raw):
        with pytest.raises(ValueError, match="PRIMITIVE_RUNTIME_DEFAULT_TIMEOUT_MS"):
            RuntimeConfig.from_env({"PRIMITIVE_RUNTIME_DEFAULT_TIMEOUT_MS": raw})

    def test_runtime_takes_limits_from_config(self, temp_db):
        from primitive_runtime import PrimitiveRuntime

        config = RuntimeConfig(db_path=temp_db, default_timeout_ms=250, max_output_bytes=64)
        runtime = PrimitiveRuntime.from_config(config)
        try:
            assert runtime.executor.default_timeout_ms == 250
            assert runtime.executor.max_output_bytes == 64
        finally:
            runtime.close()

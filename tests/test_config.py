import pytest

from scp_rerank.config import Settings, load_settings
from scp_rerank.errors import ConfigError


def test_load_from_mapping():
    settings = load_settings(
        environ={
            "SUPABASE_URL": "https://x.supabase.co",
            "SUPABASE_ANON_KEY": "anon",
            "OPENAI_API_KEY": " sk-test ",
            "TAGGING_LLM_PROVIDER": "Claude",
        }
    )
    assert settings.supabase_url == "https://x.supabase.co"
    assert settings.openai_api_key == "sk-test"
    assert settings.tagging_provider == "claude"
    assert settings.log_level == "INFO"


def test_env_file_is_overridden_by_environment(tmp_path, monkeypatch):
    env_file = tmp_path / ".env"
    env_file.write_text("OPENAI_API_KEY=from-file\nSUPABASE_URL=https://file.supabase.co\n")
    monkeypatch.setenv("OPENAI_API_KEY", "from-env")
    monkeypatch.delenv("SUPABASE_URL", raising=False)

    settings = load_settings(env_file=env_file)

    assert settings.openai_api_key == "from-env"
    assert settings.supabase_url == "https://file.supabase.co"


def test_unknown_provider_rejected():
    with pytest.raises(ConfigError, match="TAGGING_LLM_PROVIDER"):
        load_settings(environ={"TAGGING_LLM_PROVIDER": "gemini"})


def test_validate_names_every_missing_variable():
    with pytest.raises(ConfigError) as exc_info:
        Settings().validate("supabase_url", "openai_api_key")
    assert "SUPABASE_URL" in str(exc_info.value)
    assert "OPENAI_API_KEY" in str(exc_info.value)


def test_require_returns_value():
    assert Settings(openai_api_key="sk").require("openai_api_key") == "sk"


def test_store_key_prefers_service_role():
    assert Settings(supabase_anon_key="anon").store_key == "anon"
    assert Settings(supabase_anon_key="anon", supabase_service_role_key="svc").store_key == "svc"

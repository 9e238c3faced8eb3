"""Tests for the click commands in concord/cli.py. No real API calls."""

import asyncio
import logging
from pathlib import Path

import click
import httpx
import pytest
import yaml
from click.testing import CliRunner

import concord.cli as cli
from concord.models import ModelSelection, Phase
from concord.storage import JsonFileStore
from tests.conftest import FakeProviders, request_json


@pytest.fixture
def settings_file(tmp_path: Path) -> Path:
    settings = {
        "defaults": {
            "enabled_models": ["openai", "anthropic"],
            "synthesis_model": "anthropic",
            "transition_pause_sec": 0,
        },
        "invocation": {"retry_delay_sec": 0},
        "credentials_env": {
            "openai": "CONCORD_TEST_OPENAI_KEY",
            "anthropic": "CONCORD_TEST_ANTHROPIC_KEY",
        },
    }
    path = tmp_path / "settings.yaml"
    path.write_text(yaml.dump(settings), encoding="utf-8")
    return path


@pytest.fixture
def store_dir(tmp_path: Path) -> Path:
    return tmp_path / "store"


@pytest.fixture
def output_dir(tmp_path: Path) -> Path:
    return tmp_path / "output"


@pytest.fixture
def fake(monkeypatch):
    """Route every session the CLI builds through a scripted mock transport."""
    providers = FakeProviders({})
    client = providers.client()
    build = cli._build_session

    def _build(config, storage_dir):
        session = build(config, storage_dir)
        session.client = client
        return session

    monkeypatch.setattr(cli, "_build_session", _build)
    yield providers
    asyncio.run(client.aclose())


@pytest.fixture
def run(settings_file, store_dir):
    runner = CliRunner()

    def _run(*args: str, input: str | None = None):
        return runner.invoke(
            cli.main, ["--settings", str(settings_file), "--storage-dir", str(store_dir), *args], input=input,
        )

    return _run


@pytest.fixture
def env_keys(monkeypatch):
    monkeypatch.setenv("CONCORD_TEST_OPENAI_KEY", "sk-env-openai")
    monkeypatch.setenv("CONCORD_TEST_ANTHROPIC_KEY", "sk-ant-env")


# -- helpers -------------------------------------------------------------------


def test_parse_selection():
    assert cli._parse_selection("openai") == ModelSelection("openai")
    assert cli._parse_selection("google:gemini-2.5-flash") == ModelSelection("google", "gemini-2.5-flash")


def test_parse_overrides():
    assert cli._parse_overrides(("openai=gpt-4.1", "xai = grok-3")) == {"openai": "gpt-4.1", "xai": "grok-3"}


def test_parse_overrides_rejects_bad_value():
    with pytest.raises(click.BadParameter):
        cli._parse_overrides(("openai",))


def test_mask():
    assert cli._mask("sk-1234567890abcd") == "sk-1...abcd"
    assert cli._mask("short") == "*****"


# -- commands -------------------------------------------------------------------


def test_missing_settings_file(tmp_path):
    result = CliRunner().invoke(cli.main, ["--settings", str(tmp_path / "nope.yaml"), "history"])
    assert result.exit_code == 1
    assert "Config error" in result.output


def test_ask_requires_question(run):
    result = run("ask")
    assert result.exit_code == 1
    assert "Provide a QUESTION" in result.output


def test_ask_without_keys_fails(run, monkeypatch):
    monkeypatch.delenv("CONCORD_TEST_OPENAI_KEY", raising=False)
    monkeypatch.delenv("CONCORD_TEST_ANTHROPIC_KEY", raising=False)
    result = run("ask", "Q?", "--skip-health-check")
    assert result.exit_code == 1
    assert "No API key for: anthropic, openai" in result.output


def test_ask_unknown_model(run, env_keys):
    result = run("ask", "Q?", "--models", "openai,bogus")
    assert result.exit_code == 1
    assert "Unknown provider: bogus" in result.output


def test_ask_automated_end_to_end(run, fake, env_keys, store_dir, output_dir):
    fake.script = {
        "openai": ["Use YAML.\nSTATUS: CONTINUE", "YAML.\nSTATUS: SATISFIED"],
        "anthropic": ["Use JSON.\nSTATUS: SATISFIED", "Agreed.\nSTATUS: SATISFIED", "## Consensus\nYAML wins."],
    }
    result = run("ask", "YAML or JSON?", "--skip-health-check", "--output", str(output_dir))

    assert result.exit_code == 0, result.output
    assert "YAML wins." in result.output
    saved = list(output_dir.glob("*.md"))
    assert len(saved) == 1
    assert "## Round 2" in saved[0].read_text(encoding="utf-8")

    store = JsonFileStore(store_dir)
    assert store.load_current_session().phase is Phase.COMPLETE
    assert store.load_history()[0].query == "YAML or JSON?"
    assert fake.requests["openai"][0].headers["Authorization"] == "Bearer sk-env-openai"


def test_ask_with_overrides_and_synthesizer(run, fake, env_keys, store_dir, output_dir):
    fake.script = {"openai": ["Solo.\nSTATUS: SATISFIED", "Synth."]}
    result = run(
        "ask", "Q?", "--models", "openai", "--model", "openai=gpt-4.1",
        "--synthesizer", "openai:o3", "--skip-health-check", "--output", str(output_dir),
    )
    assert result.exit_code == 0, result.output
    models = [request_json(r)["model"] for r in fake.requests["openai"]]
    assert models == ["gpt-4.1", "o3"]
    prefs = JsonFileStore(store_dir).load_preferences()
    assert prefs.enabled_models == ["openai"]
    assert prefs.model_configs == {"openai": "gpt-4.1"}


def test_ask_failure_then_resume(run, fake, env_keys, store_dir, output_dir):
    fake.script = {
        "openai": ["A.\nSTATUS: SATISFIED"],
        "anthropic": [httpx.Response(400, json={"error": {"message": "bad key"}}), "B.\nSTATUS: SATISFIED"],
    }
    result = run("ask", "Q?", "--skip-health-check", "--output", str(output_dir), input="n\n")
    assert result.exit_code == 0, result.output
    assert "Retry?" in result.output
    assert "concord resume" in result.output
    assert JsonFileStore(store_dir).load_current_session().phase is Phase.DELIBERATION

    blocked = run("ask", "Another?", "--skip-health-check")
    assert blocked.exit_code == 1
    assert "in progress" in blocked.output

    resumed = run("resume", "--output", str(output_dir))
    assert resumed.exit_code == 0, resumed.output
    assert JsonFileStore(store_dir).load_current_session().phase is Phase.COMPLETE
    assert fake.calls("openai") == 2


def test_ask_manual_mode(run, monkeypatch, store_dir, output_dir):
    answers = iter(["Only answer.\nSTATUS: SATISFIED", "Pasted synthesis."])
    monkeypatch.setattr(cli, "_edit_response", lambda title, prompt: next(answers))

    result = run("ask", "Q?", "--manual", "--models", "openai", "--output", str(output_dir))

    assert result.exit_code == 0, result.output
    history = JsonFileStore(store_dir).load_history()
    assert history[0].synthesis.response == "Pasted synthesis."
    assert JsonFileStore(store_dir).load_preferences().automated is False


def test_manual_mode_stops_on_empty_paste(run, monkeypatch, store_dir):
    monkeypatch.setattr(cli, "_edit_response", lambda title, prompt: "")
    result = run("ask", "Q?", "--manual")
    assert result.exit_code == 0
    assert "deliberation saved" in result.output
    assert JsonFileStore(store_dir).load_current_session().phase is Phase.DELIBERATION


def test_resume_without_session(run):
    result = run("resume")
    assert result.exit_code == 1
    assert "No deliberation in progress" in result.output


def test_new_discards_current(run, monkeypatch, store_dir):
    monkeypatch.setattr(cli, "_edit_response", lambda title, prompt: "")
    run("ask", "Q?", "--manual")
    result = run("new")
    assert result.exit_code == 0
    assert JsonFileStore(store_dir).load_current_session() is None


def test_keys_set_list_remove(run, store_dir, monkeypatch):
    monkeypatch.delenv("CONCORD_TEST_OPENAI_KEY", raising=False)
    result = run("keys", "set", "openrouter", "sk-or-1234567890")
    assert result.exit_code == 0
    assert "Saved key for OpenRouter" in result.output
    assert JsonFileStore(store_dir).load_credentials()["openrouter"] == "sk-or-1234567890"

    listed = run("keys", "list")
    assert "sk-o...7890" in listed.output
    assert "sk-or-1234567890" not in listed.output

    run("keys", "remove", "openrouter")
    assert "openrouter" not in JsonFileStore(store_dir).load_credentials()


def test_keys_set_warns_on_prefix(run):
    result = run("keys", "set", "anthropic", "wrong-prefix-key")
    assert result.exit_code == 0
    assert "usually start with" in result.output


def test_keys_set_unknown_provider(run):
    result = run("keys", "set", "bogus", "key")
    assert result.exit_code == 1


def test_providers_lists_catalog(run, env_keys):
    result = run("providers")
    assert result.exit_code == 0
    for provider_id in ("openai", "anthropic", "google", "xai", "mistral", "deepseek"):
        assert provider_id in result.output


def test_history_show_export_delete(run, store_dir, output_dir, completed_deliberation):
    JsonFileStore(store_dir).save_history([completed_deliberation])

    listed = run("history")
    assert "abc123" in listed.output

    shown = run("show", "abc123")
    assert shown.exit_code == 0
    assert "Use YAML for config." in shown.output

    exported = run("export", "abc123", "--output", str(output_dir))
    assert exported.exit_code == 0
    assert len(list(output_dir.glob("*.md"))) == 1

    loaded = run("load", "abc123")
    assert loaded.exit_code == 0
    assert JsonFileStore(store_dir).load_current_session().id == "abc123"

    deleted = run("delete", "abc123")
    assert deleted.exit_code == 0
    assert JsonFileStore(store_dir).load_history() == []

    missing = run("show", "abc123")
    assert missing.exit_code == 1
    assert "No deliberation with id abc123" in missing.output


def test_check_reports_failures(run, env_keys, monkeypatch):
    async def checks(selections, credentials, use_router=False, *, client=None):
        return {"openai": (True, ""), "anthropic": (False, "HTTP 401")}

    monkeypatch.setattr(cli, "run_health_checks", checks)
    result = run("check")
    assert result.exit_code == 1
    assert "HTTP 401" in result.output


def test_chat_answers_follow_up(run, fake, env_keys, store_dir, completed_deliberation):
    JsonFileStore(store_dir).save_history([completed_deliberation])
    fake.script = {"anthropic": ["Because humans edit it."]}
    result = run("chat", "abc123", input="Why YAML?\n\n")
    assert result.exit_code == 0, result.output
    assert "Because humans edit it." in result.output
    assert fake.calls("anthropic") == 1


def test_chat_without_completed_deliberation(run):
    result = run("chat")
    assert result.exit_code == 1


def test_verbose_logging_keeps_http_request_lines_quiet():
    cli._setup_logging(verbose=True)
    assert logging.getLogger("httpx").getEffectiveLevel() == logging.WARNING
    assert not logging.getLogger("httpx").isEnabledFor(logging.INFO)

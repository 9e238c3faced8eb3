"""Load settings.yaml into typed dataclasses. Reads API keys from the environment."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from concord import prompts as default_prompts

logger = logging.getLogger(__name__)

_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"


@dataclass
class DefaultsConfig:
    enabled_models: list[str] = field(default_factory=lambda: ["anthropic", "openai", "google"])
    synthesis_model: str = "anthropic"
    use_router: bool = False
    automated: bool = True
    max_rounds: int = 5
    history_limit: int = 50
    storage_dir: Path = Path("~/.concord")
    output_dir: Path = Path("./output")
    transition_pause_sec: float = 1.5


@dataclass
class InvocationConfig:
    max_tokens: int = 4096
    max_retries: int = 2
    retry_delay_sec: float = 1.0
    timeout_sec: float = 120.0
    router_referer: str = "https://github.com/concord-llm/concord"
    router_title: str = "Concord"


@dataclass
class PromptsConfig:
    first_round: str = default_prompts.FIRST_ROUND_TEMPLATE
    followup: str = default_prompts.FOLLOWUP_TEMPLATE
    synthesis: str = default_prompts.SYNTHESIS_TEMPLATE
    followup_chat: str = default_prompts.FOLLOWUP_CHAT_TEMPLATE


@dataclass
class AppConfig:
    defaults: DefaultsConfig
    invocation: InvocationConfig
    prompts: PromptsConfig
    credentials_env: dict[str, str] = field(default_factory=dict)


def load_config(settings_path: Path = _SETTINGS_PATH) -> AppConfig:
    """Load and validate configuration from settings.yaml.

    Raises FileNotFoundError if settings file missing. Every section is
    optional; missing keys fall back to the dataclass defaults.
    """
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with settings_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    base = DefaultsConfig()
    defaults_raw = raw.get("defaults") or {}
    defaults = DefaultsConfig(
        enabled_models=list(defaults_raw.get("enabled_models", base.enabled_models)),
        synthesis_model=str(defaults_raw.get("synthesis_model", base.synthesis_model)),
        use_router=bool(defaults_raw.get("use_router", base.use_router)),
        automated=bool(defaults_raw.get("automated", base.automated)),
        max_rounds=int(defaults_raw.get("max_rounds", base.max_rounds)),
        history_limit=int(defaults_raw.get("history_limit", base.history_limit)),
        storage_dir=Path(defaults_raw.get("storage_dir", base.storage_dir)).expanduser(),
        output_dir=Path(defaults_raw.get("output_dir", base.output_dir)),
        transition_pause_sec=float(defaults_raw.get("transition_pause_sec", base.transition_pause_sec)),
    )

    inv_base = InvocationConfig()
    invocation_raw = raw.get("invocation") or {}
    invocation = InvocationConfig(
        max_tokens=int(invocation_raw.get("max_tokens", inv_base.max_tokens)),
        max_retries=int(invocation_raw.get("max_retries", inv_base.max_retries)),
        retry_delay_sec=float(invocation_raw.get("retry_delay_sec", inv_base.retry_delay_sec)),
        timeout_sec=float(invocation_raw.get("timeout_sec", inv_base.timeout_sec)),
        router_referer=str(invocation_raw.get("router_referer", inv_base.router_referer)),
        router_title=str(invocation_raw.get("router_title", inv_base.router_title)),
    )

    prompts_raw = raw.get("prompts") or {}
    prompts = PromptsConfig(**{k: str(v) for k, v in prompts_raw.items() if k in PromptsConfig.__dataclass_fields__})
    unknown = set(prompts_raw) - set(PromptsConfig.__dataclass_fields__)
    if unknown:
        logger.warning("Ignoring unknown prompt templates: %s", ", ".join(sorted(unknown)))

    credentials_env = {str(k): str(v) for k, v in (raw.get("credentials_env") or {}).items()}

    return AppConfig(
        defaults=defaults,
        invocation=invocation,
        prompts=prompts,
        credentials_env=credentials_env,
    )


def credentials_from_env(config: AppConfig) -> dict[str, str]:
    """Collect API keys from the environment variables named in credentials_env."""
    credentials: dict[str, str] = {}
    for provider_name, env_var in config.credentials_env.items():
        api_key = os.environ.get(env_var, "").strip()
        if api_key:
            credentials[provider_name] = api_key
            logger.info("Credential found: %s", provider_name)
        else:
            logger.debug("No credential for %s (set %s in .env)", provider_name, env_var)
    return credentials

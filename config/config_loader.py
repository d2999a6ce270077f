"""Load settings.yaml into typed dataclasses. Reports provider keys at startup."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from council.models import CouncilMember, ModelRate

logger = logging.getLogger(__name__)

_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"


@dataclass
class ProviderConfig:
    name: str
    sdk: str
    api_key_env: str
    max_tokens: int
    base_url: str | None = None


@dataclass
class CouncilConfig:
    timeout_sec: float = 30.0
    max_retries: int = 3
    base_delay_ms: int = 1000


@dataclass
class PricingConfig:
    ttl_sec: float = 3600.0
    refresh: bool = False
    rates: dict[str, ModelRate] = field(default_factory=dict)


@dataclass
class PresetConfig:
    name: str
    description: str
    members: list[CouncilMember]
    judge_template: str


@dataclass
class DefaultsConfig:
    provider: str
    judge_model: str
    output_dir: Path
    store_dir: Path
    judge_template: str = "general"
    members: list[str] = field(default_factory=list)


@dataclass
class AppConfig:
    defaults: DefaultsConfig
    council: CouncilConfig
    providers: dict[str, ProviderConfig]
    pricing: PricingConfig
    judge_templates: dict[str, str] = field(default_factory=dict)
    member_templates: dict[str, str] = field(default_factory=dict)
    presets: dict[str, PresetConfig] = field(default_factory=dict)
    available_providers: set[str] = field(default_factory=set)


def _load_rate(raw: dict) -> ModelRate:
    return ModelRate(input=float(raw["input"]), output=float(raw["output"]))


def _load_member(raw: str | dict) -> CouncilMember:
    if isinstance(raw, str):
        return CouncilMember(model_id=raw)
    return CouncilMember(
        model_id=str(raw["model"]),
        persona=raw.get("persona"),
        prompt_template_id=raw.get("template"),
    )


def load_config(settings_path: Path = _SETTINGS_PATH) -> AppConfig:
    """Load and validate configuration from settings.yaml.

    Raises FileNotFoundError if settings file missing.
    Logs which providers have API keys but does not raise; the credential
    store fails fast when a run needs a missing key.
    """
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with settings_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    defaults_raw = raw["defaults"]
    defaults = DefaultsConfig(
        provider=str(defaults_raw["provider"]),
        judge_model=str(defaults_raw["judge_model"]),
        output_dir=Path(defaults_raw["output_dir"]),
        store_dir=Path(defaults_raw["store_dir"]),
        judge_template=str(defaults_raw.get("judge_template", "general")),
        members=[str(m) for m in defaults_raw.get("members", [])],
    )

    council_raw = raw.get("council", {})
    council = CouncilConfig(
        timeout_sec=float(council_raw.get("timeout_sec", 30)),
        max_retries=int(council_raw.get("max_retries", 3)),
        base_delay_ms=int(council_raw.get("base_delay_ms", 1000)),
    )

    pricing_raw = raw.get("pricing", {})
    pricing = PricingConfig(
        ttl_sec=float(pricing_raw.get("ttl_sec", 3600)),
        refresh=bool(pricing_raw.get("refresh", False)),
        rates={k: _load_rate(v) for k, v in pricing_raw.get("rates", {}).items()},
    )

    presets = {
        preset_id: PresetConfig(
            name=str(preset_raw.get("name", preset_id)),
            description=str(preset_raw.get("description", "")),
            members=[_load_member(m) for m in preset_raw["members"]],
            judge_template=str(preset_raw.get("judge_template", defaults.judge_template)),
        )
        for preset_id, preset_raw in raw.get("presets", {}).items()
    }

    providers: dict[str, ProviderConfig] = {}
    available_providers: set[str] = set()

    for provider_name, provider_raw in raw["providers"].items():
        provider_cfg = ProviderConfig(
            name=provider_name,
            sdk=provider_raw["sdk"],
            api_key_env=provider_raw["api_key_env"],
            max_tokens=int(provider_raw["max_tokens"]),
            base_url=provider_raw.get("base_url"),
        )
        providers[provider_name] = provider_cfg

        api_key = os.environ.get(provider_raw["api_key_env"], "").strip()
        if api_key:
            available_providers.add(provider_name)
            logger.info("Provider available: %s", provider_name)
        else:
            logger.info(
                "Provider skipped (no API key): %s — set %s in .env",
                provider_name,
                provider_raw["api_key_env"],
            )

    return AppConfig(
        defaults=defaults,
        council=council,
        providers=providers,
        pricing=pricing,
        judge_templates={k: str(v) for k, v in raw.get("judge_templates", {}).items()},
        member_templates={k: str(v or "") for k, v in raw.get("member_templates", {}).items()},
        presets=presets,
        available_providers=available_providers,
    )

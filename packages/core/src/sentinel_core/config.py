import os
from pathlib import Path
from typing import Optional

import yaml

from sentinel_core.errors import ConfigError

DEFAULT_CONFIG: dict = {
    "provider": "openai",  # "openai" | "selfhosted" | "anthropic"
    "model": None,  # None = provider default
    "api_endpoint": None,  # required for selfhosted
    "guidelines": None,  # None = use built-in default; set to a path string to override
    "prompt_template": None,  # path to a custom review prompt template
    "include": [],  # fnmatch patterns; empty = every code file
    "exclude": [],  # fnmatch patterns or directory names to skip (e.g. "migrations/", "*.min.js")
    "max_lines_per_file": 500,
    "max_files_per_batch": 50,
    "max_workers": 1,
    "auto_clean_outdated": True,
    "resolve_outdated_threads": True,
    "incremental_mode": True,
    "mode": "review",  # "review" | "full" (ignore cached state); a /review PR comment may override
    "enable_check_runs": False,
    "check_name": "Code Sentinel",
    "cache_backend": "directory",  # "noop" | "directory" | "sqlite" | "gist"
    "cache_dir": ".code-sentinel-cache",
    "cache_path": ".code-sentinel.db",
    "gist_id": None,
    "cache_ttl_days": 7,
    "post_summary": True,
    "review_draft_prs": False,
}

PROVIDERS = ("openai", "selfhosted", "anthropic")
MODES = ("review", "full")
CACHE_BACKENDS = ("noop", "directory", "sqlite", "gist")

_LIST_KEYS = {"include", "exclude"}
_BOOL_KEYS = {
    "auto_clean_outdated",
    "resolve_outdated_threads",
    "incremental_mode",
    "enable_check_runs",
    "post_summary",
    "review_draft_prs",
}
_INT_KEYS = {"max_lines_per_file", "max_files_per_batch", "max_workers", "cache_ttl_days"}

BUILTIN_GUIDELINES_DIR = Path(__file__).parent / "guidelines"
_BUILTIN_DEFAULT = BUILTIN_GUIDELINES_DIR / "default.md"


def _coerce(key: str, value):
    """Convert a string setting (Action input, env var) to the key's type."""
    if not isinstance(value, str):
        return value
    text = value.strip()
    if key in _BOOL_KEYS:
        if text.lower() in ("true", "yes", "1", "on"):
            return True
        if text.lower() in ("false", "no", "0", "off"):
            return False
        raise ConfigError(f"{key}: expected a boolean, got {value!r}")
    if key in _INT_KEYS:
        try:
            return int(text)
        except ValueError:
            raise ConfigError(f"{key}: expected an integer, got {value!r}") from None
    if key == "mode":
        return text.lower() or DEFAULT_CONFIG["mode"]
    if key in _LIST_KEYS:
        # Action inputs are strings: accept comma- or newline-separated patterns.
        return [p.strip() for p in text.replace("\n", ",").split(",") if p.strip()]
    return text or None


def _action_inputs(environ) -> dict:
    """Read GitHub Action inputs (INPUT_<NAME>, with dashes kept) for known keys."""
    inputs = {}
    for key in DEFAULT_CONFIG:
        for name in (key, key.replace("_", "-")):
            raw = environ.get(f"INPUT_{name.upper()}")
            if raw is not None and raw.strip() != "":
                inputs[key] = raw
                break
    return inputs


def load_config(
    config_path: str = ".sentinel.yml",
    cli_overrides: Optional[dict] = None,
    environ: Optional[dict] = None,
) -> dict:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. .sentinel.yml in the current directory
      3. GitHub Action inputs (INPUT_* environment variables)
      4. CLI argument overrides
    """
    environ = os.environ if environ is None else environ
    config = {**DEFAULT_CONFIG, "include": list(DEFAULT_CONFIG["include"]), "exclude": list(DEFAULT_CONFIG["exclude"])}

    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            try:
                file_config = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigError(f"{config_path} is not valid YAML: {e}") from e
        if not isinstance(file_config, dict):
            raise ConfigError(f"{config_path} must contain a mapping of settings.")
        config.update({k.replace("-", "_"): v for k, v in file_config.items()})

    for key, value in _action_inputs(environ).items():
        config[key] = value

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:
                config[key] = value

    for key in list(config):
        config[key] = _coerce(key, config[key])

    # Resolve credentials from environment variables
    config["github_token"] = environ.get("GITHUB_TOKEN") or environ.get("INPUT_GITHUB-TOKEN")
    config["openai_api_key"] = environ.get("OPENAI_API_KEY")
    config["anthropic_api_key"] = environ.get("ANTHROPIC_API_KEY")
    config["api_key"] = environ.get("SENTINEL_API_KEY") or environ.get("INPUT_API-KEY")

    return config


def provider_api_key(config: dict) -> Optional[str]:
    provider = config.get("provider")
    if provider == "openai":
        return config.get("openai_api_key") or config.get("api_key")
    if provider == "anthropic":
        return config.get("anthropic_api_key") or config.get("api_key")
    return config.get("api_key")


def validate_config(config: dict, require_github: bool = True) -> list[str]:
    """Return a list of human-readable problems; empty means the config is usable."""
    problems = []
    if require_github and not config.get("github_token"):
        problems.append("GITHUB_TOKEN is not set.")

    provider = config.get("provider")
    if provider not in PROVIDERS:
        problems.append(f"Unknown provider {provider!r}. Choose one of: {', '.join(PROVIDERS)}.")
    elif provider == "selfhosted":
        if not config.get("api_endpoint"):
            problems.append("api_endpoint is required for the selfhosted provider.")
        if not config.get("model"):
            problems.append("model is required for the selfhosted provider.")
    elif not provider_api_key(config):
        env_name = "OPENAI_API_KEY" if provider == "openai" else "ANTHROPIC_API_KEY"
        problems.append(f"{env_name} (or SENTINEL_API_KEY) is not set.")

    mode = config.get("mode")
    if mode not in MODES:
        problems.append(f"Unknown mode {mode!r}. Choose one of: {', '.join(MODES)}.")

    for key in ("max_lines_per_file", "max_files_per_batch", "max_workers"):
        value = config.get(key)
        if not isinstance(value, int) or isinstance(value, bool) or value < 1:
            problems.append(f"{key} must be a positive integer.")

    ttl = config.get("cache_ttl_days")
    if not isinstance(ttl, int) or not 1 <= ttl <= 7:
        problems.append("cache_ttl_days must be between 1 and 7.")

    backend = config.get("cache_backend")
    if backend not in CACHE_BACKENDS:
        problems.append(f"Unknown cache_backend {backend!r}. Choose one of: {', '.join(CACHE_BACKENDS)}.")
    elif backend == "gist" and not config.get("gist_id"):
        problems.append("gist_id is required for the gist cache backend.")

    return problems


def load_guidelines(config: dict) -> str:
    """
    Load review guidelines.

    If ``guidelines`` is set in config, loads from that path (relative to cwd).
    Otherwise falls back to the built-in default.
    """
    custom_path = config.get("guidelines")
    if custom_path:
        p = Path(custom_path)
        if not p.exists():
            raise ConfigError(f"Guidelines file not found: {custom_path}")
        return p.read_text()

    if _BUILTIN_DEFAULT.exists():
        return _BUILTIN_DEFAULT.read_text()

    raise ConfigError("No guidelines configured and built-in default is missing.")

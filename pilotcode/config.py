"""Settings loading & CLI override utilities.

Layering, lowest to highest precedence: dataclass defaults, JSON config file,
PILOTCODE_* environment variables, explicit CLI flags, generic `--key value`
overrides.
"""

import dataclasses
import json
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

ENV_PREFIX = "PILOTCODE_"
API_KEY_ENV_VARS = ("PILOTCODE_API_KEY", "OPENAI_API_KEY", "ANTHROPIC_API_KEY")
BASE_URL_ENV_VARS = ("PILOTCODE_URL", "OPENAI_BASE_URL")

DEFAULT_MODEL = "claude-3-7-sonnet"
DEFAULT_BASE_URLS = {
    "content_blocks": "https://api.anthropic.com/v1",
    "tool_calls": "https://api.openai.com/v1",
}

DEFAULT_SYSTEM_PROMPT = (
    "You are a coding agent working in a local repository. Work only through "
    "the provided tools. Keep a task checklist with the todo tool, preview "
    "every sed edit with dry_run=true before applying it, and call the "
    "finished tool when the task is complete."
)


class ConfigError(Exception):
    """Invalid or incomplete configuration; the CLI exits with status 1."""


@dataclass
class Settings:
    model: str = DEFAULT_MODEL
    base_url: str = ""
    flavor: str = "tool_calls"
    api_key: str = field(default="", repr=False)
    temperature: Optional[float] = None
    max_tokens: int = 4096
    max_retries: int = 10
    base_delay: float = 1.0
    request_timeout: float = 300.0
    tool_timeout: float = 10.0
    max_turns: int = 0
    interactive: bool = True
    allow_list: List[str] = field(default_factory=list)
    workdir: str = "."
    todo_path: str = "todo.md"
    formatter: str = "black"
    doc_command: str = "pydoc"
    log_dir: str = ""
    system_prompt: str = DEFAULT_SYSTEM_PROMPT

    @property
    def url(self) -> str:
        return self.base_url or DEFAULT_BASE_URLS.get(self.flavor, "")

    def as_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


SETTING_NAMES = tuple(f.name for f in dataclasses.fields(Settings))


def load_json(path: str) -> Any:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def load_config_file(path: str) -> Dict[str, Any]:
    try:
        data = load_json(path)
    except FileNotFoundError as exc:
        raise ConfigError(f"config file not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"invalid JSON in config file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"config file {path} must contain a JSON object")
    return data


def _coerce_cli_value(raw: str, existing: Any, key_name: str) -> Any:
    value = raw.strip()
    lowered = value.lower()
    if lowered in {"none", "null"}:
        return None

    if existing is None:
        if lowered in {"true", "false"}:
            return lowered == "true"
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return value

    if isinstance(existing, bool):
        if lowered in {"true", "false", "1", "0", "yes", "no"}:
            return lowered in {"true", "1", "yes"}
        raise ConfigError(f"Invalid boolean for {key_name}: {raw}")

    if isinstance(existing, int):
        try:
            return int(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {key_name}: {raw}") from exc

    if isinstance(existing, float):
        try:
            return float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid float for {key_name}: {raw}") from exc

    if isinstance(existing, list):
        if value.startswith("["):
            try:
                parsed = json.loads(value)
            except json.JSONDecodeError as exc:
                raise ConfigError(f"Invalid JSON array for {key_name}: {raw}") from exc
            if not isinstance(parsed, list):
                raise ConfigError(f"Expected JSON array for {key_name}: {raw}")
            return parsed
        return [item.strip() for item in value.split(",") if item.strip()]

    return value


def apply_cli_overrides(config: Dict[str, Any], extra_args: List[str]) -> Dict[str, Any]:
    if not extra_args:
        return config
    overrides: Dict[str, Any] = {}
    idx = 0
    while idx < len(extra_args):
        arg = extra_args[idx]
        if not arg.startswith("--"):
            raise ConfigError(f"Unexpected argument: {arg}")
        key = arg[2:].replace("-", "_")
        if idx + 1 >= len(extra_args) or extra_args[idx + 1].startswith("--"):
            raise ConfigError(f"Missing value for {arg}")
        raw_value = extra_args[idx + 1]
        overrides[key] = _coerce_cli_value(raw_value, config.get(key), f"--{key}")
        idx += 2

    merged = dict(config)
    merged.update(overrides)
    return merged


# Flags the argparse parser in pilotcode.pilotcode handles itself.
KNOWN_FLAGS = {
    "--repl",
    "--config",
    "--model", "-m",
    "--url",
    "--flavor",
    "--temperature",
    "--max_tokens",
    "--non-interactive",
    "--log-dir",
    "--help", "-h",
}
FLAGS_WITH_VALUES = {
    "--config",
    "--model", "-m",
    "--url",
    "--flavor",
    "--temperature",
    "--max_tokens",
    "--log-dir",
}


def split_cli_overrides(argv: List[str]) -> Tuple[List[str], List[str]]:
    filtered: List[str] = []
    overrides: List[str] = []
    idx = 0
    while idx < len(argv):
        arg = argv[idx]
        if arg in KNOWN_FLAGS:
            filtered.append(arg)
            if arg in FLAGS_WITH_VALUES:
                if idx + 1 >= len(argv):
                    raise ConfigError(f"Missing value for {arg}")
                filtered.append(argv[idx + 1])
                idx += 2
            else:
                idx += 1
            continue

        if arg.startswith("--"):
            if idx + 1 >= len(argv) or argv[idx + 1].startswith("--"):
                raise ConfigError(f"Missing value for {arg}")
            overrides.extend([arg, argv[idx + 1]])
            idx += 2
            continue

        filtered.append(arg)
        idx += 1

    return filtered, overrides


def env_overrides(environ: Mapping[str, str]) -> Dict[str, Any]:
    """PILOTCODE_<NAME> for every setting, coerced to the default's type."""
    defaults = Settings().as_dict()
    out: Dict[str, Any] = {}
    for name in SETTING_NAMES:
        raw = environ.get(ENV_PREFIX + name.upper())
        if raw is None or raw == "":
            continue
        out[name] = _coerce_cli_value(raw, defaults[name], ENV_PREFIX + name.upper())
    if "base_url" not in out:
        for var in BASE_URL_ENV_VARS:
            if environ.get(var):
                out["base_url"] = environ[var]
                break
    return out


def resolve_api_key(environ: Mapping[str, str]) -> str:
    for var in API_KEY_ENV_VARS:
        value = environ.get(var)
        if value:
            return value
    return ""


def _matches_default_type(value: Any, default: Any) -> bool:
    if default is None:
        return True
    if isinstance(default, bool):
        return isinstance(value, bool)
    if isinstance(default, int):
        return isinstance(value, int) and not isinstance(value, bool)
    if isinstance(default, float):
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    return isinstance(value, type(default))


def coerce_file_values(data: Dict[str, Any], source: str) -> Dict[str, Any]:
    """Config file values take the default's type; strings are coerced like CLI values."""
    defaults = Settings().as_dict()
    out: Dict[str, Any] = {}
    for key, value in data.items():
        if key in defaults:
            default = defaults[key]
            if isinstance(value, str) and not isinstance(default, str):
                value = _coerce_cli_value(value, default, f"{key} in {source}")
            if not _matches_default_type(value, default):
                raise ConfigError(
                    f"Invalid value for {key} in {source}: expected {type(default).__name__}, got {value!r}"
                )
        out[key] = value
    return out


def _check_settings(settings: Settings) -> None:
    if settings.flavor not in DEFAULT_BASE_URLS:
        raise ConfigError(
            f"Unknown flavor '{settings.flavor}'. Available: {', '.join(sorted(DEFAULT_BASE_URLS))}"
        )
    if settings.max_turns < 0:
        raise ConfigError("max_turns must be >= 0")
    if settings.max_retries < 0:
        raise ConfigError("max_retries must be >= 0")
    if settings.tool_timeout <= 0:
        raise ConfigError("tool_timeout must be > 0")
    if not settings.model:
        raise ConfigError("model must not be empty")


def load_settings(
    config_path: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
    cli_values: Optional[Dict[str, Any]] = None,
    extra_args: Optional[List[str]] = None,
    require_api_key: bool = True,
) -> Settings:
    environ = os.environ if environ is None else environ
    merged: Dict[str, Any] = Settings().as_dict()

    if config_path:
        merged.update(coerce_file_values(load_config_file(config_path), config_path))
    merged.update(env_overrides(environ))
    if not merged.get("api_key"):
        merged["api_key"] = resolve_api_key(environ)
    for key, value in (cli_values or {}).items():
        if value is not None:
            merged[key] = value
    merged = apply_cli_overrides(merged, extra_args or [])

    unknown = sorted(set(merged) - set(SETTING_NAMES))
    if unknown:
        raise ConfigError(f"Unknown setting(s): {', '.join(unknown)}")

    try:
        settings = Settings(**merged)
    except TypeError as exc:
        raise ConfigError(str(exc)) from exc
    _check_settings(settings)

    if require_api_key and not settings.api_key:
        raise ConfigError(
            f"No API key found; set one of {', '.join(API_KEY_ENV_VARS)}"
        )
    return settings

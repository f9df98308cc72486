from __future__ import annotations

import copy
import os
import tomllib
from pathlib import Path
from typing import Any

CONFIG_DIR = Path("~/.toolchat").expanduser()
CONFIG_FILE = CONFIG_DIR / "config.toml"

DEFAULTS: dict[str, Any] = {
    "llm": {
        "host": "http://localhost:11434",
        "model": "qwen2.5:7b",
        "timeout": 120,
        "max_tool_rounds": 10,
    },
    "chat": {
        "system_prompt": "",
    },
}

# Environment variables override the file; CLI options override both.
ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "TOOLCHAT_HOST": ("llm", "host"),
    "TOOLCHAT_MODEL": ("llm", "model"),
}


def load(path: Path | None = None) -> dict[str, Any]:
    """Load config from ~/.toolchat/config.toml, merging with defaults and env."""
    path = path or CONFIG_FILE
    config = copy.deepcopy(DEFAULTS)
    if path.exists():
        with open(path, "rb") as f:
            on_disk = tomllib.load(f)
        config = _deep_merge(config, on_disk)
    for var, (section, key) in ENV_OVERRIDES.items():
        value = os.environ.get(var)
        if value:
            config[section][key] = value
    return config


def save(config: dict[str, Any], path: Path | None = None) -> Path:
    """Save config dict as TOML (manual serialization, flat sections only)."""
    path = path or CONFIG_FILE
    path.parent.mkdir(parents=True, exist_ok=True)
    lines = _dict_to_toml(config)
    path.write_text("\n".join(lines).lstrip("\n") + "\n")
    return path


def _deep_merge(base: dict, override: dict) -> dict:
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _dict_to_toml(d: dict[str, Any]) -> list[str]:
    lines: list[str] = []
    sections: list[tuple[str, dict]] = []

    for k, v in d.items():
        if isinstance(v, dict):
            sections.append((k, v))
        else:
            lines.append(f"{k} = {_toml_value(v)}")

    for section_key, section_val in sections:
        lines.append("")
        lines.append(f"[{section_key}]")
        for sk, sv in section_val.items():
            lines.append(f"{sk} = {_toml_value(sv)}")

    return lines


def _toml_value(v: Any) -> str:
    if isinstance(v, bool):
        return "true" if v else "false"
    if isinstance(v, (int, float)):
        return str(v)
    if isinstance(v, str):
        escaped = v.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")
        return f'"{escaped}"'
    raise ValueError(f"Unsupported TOML value type: {type(v)}")

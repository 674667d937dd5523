"""Hooks configuration.

The config file is JSON with a ``hooks`` key:

  - absent (or no file at all): every rule at its recommended default
  - ``true``: every flag enabled
  - an object: the listed flags as given, every other flag disabled

The resolved value is a read-only ``flag -> bool`` mapping passed explicitly
through the router into every rule.
"""

import json
import os
from pathlib import Path
from types import MappingProxyType

from policy_guard import audit, rules
from policy_guard.errors import ConfigError


def config_path():
    explicit = os.environ.get("POLICY_GUARD_CONFIG")
    if explicit:
        return Path(explicit).expanduser()
    base = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(base) / "policy-guard" / "config.json"


def read_config(path):
    """Decoded config object; ``{}`` when the file does not exist."""
    try:
        with open(path) as f:
            raw = json.load(f)
    except FileNotFoundError:
        return {}
    except json.JSONDecodeError as e:
        raise ConfigError(f"{path}: invalid JSON: {e}") from e
    except OSError as e:
        raise ConfigError(f"{path}: cannot read file: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigError(f"{path}: expected JSON object, got {type(raw).__name__}")
    return raw


def _issues(hooks):
    """(errors, unknown keys) for a raw ``hooks`` value."""
    if hooks is None or isinstance(hooks, bool):
        return [], []
    if not isinstance(hooks, dict):
        return [f"'hooks' must be true or an object, got {type(hooks).__name__}"], []
    known = rules.config_keys()
    errors = [
        f"'hooks.{key}' must be a boolean, got {type(value).__name__}"
        for key, value in hooks.items()
        if not isinstance(value, bool)
    ]
    unknown = [key for key in hooks if key not in known]
    return errors, unknown


def resolve_hooks(hooks):
    """Resolve a raw ``hooks`` value into a read-only flag map."""
    errors, unknown = _issues(hooks)
    if errors:
        raise ConfigError("; ".join(errors))
    for key in unknown:
        audit.logger.warning("Ignoring unknown hooks key: %s", key)
    keys = rules.config_keys()
    if hooks is None:
        resolved = {rule.flag: rule.recommended for rule in rules.RULES}
        resolved.update((key, False) for key in rules.CONFIG_ONLY_KEYS)
    elif isinstance(hooks, bool):
        resolved = dict.fromkeys(keys, hooks)
    else:
        resolved = {key: hooks.get(key, False) for key in keys}
    return MappingProxyType(resolved)


def load_hooks_config():
    return resolve_hooks(read_config(config_path()).get("hooks"))


def validate_config():
    """Check the config file. Returns a list of issues (empty when valid)."""
    path = config_path()
    if not path.exists():
        return []
    try:
        hooks = read_config(path).get("hooks")
    except ConfigError as e:
        return [str(e)]
    errors, unknown = _issues(hooks)
    return errors + [f"'hooks.{key}' is not a known key" for key in unknown]

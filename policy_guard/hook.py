"""PreToolUse hook entrypoint.

Reads one JSON tool event from stdin and exits 0 (allow), 2 (blocked, reason
on stderr) or 1 (malformed input or configuration).

  policy-guard --list-keys   print every hooks config key
  policy-guard --validate    check the config file
"""

import json
import os
import sys

from policy_guard import audit, config, router, rules
from policy_guard.errors import ConfigError

MAX_INPUT_BYTES = 10 * 1024 * 1024


def _list_keys():
    keys = rules.config_keys()
    width = max(len(key) for key in keys)
    for key, description in keys.items():
        print(f"{key:<{width}}  {description}")
    return 0


def _validate():
    """Validate the config file.

    Output channels follow hook conventions:
      - Success (exit 0): stdout
      - Failure (exit 2): stderr
    """
    path = config.config_path()
    issues = config.validate_config()
    if issues:
        print(f"policy-guard config {path}: validation failed", file=sys.stderr)
        for issue in issues:
            print(f"  ✗ {issue}", file=sys.stderr)
        return 2
    if path.exists():
        print(f"policy-guard config {path}: OK")
    else:
        print(f"policy-guard config {path} not found, using recommended defaults")
    return 0


def run(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    if "--list-keys" in argv:
        return _list_keys()
    if "--validate" in argv:
        return _validate()

    audit.setup_logging()
    raw_input = sys.stdin.buffer.read(MAX_INPUT_BYTES + 1)
    if len(raw_input) > MAX_INPUT_BYTES:
        print("policy-guard: hook input exceeds 10MB", file=sys.stderr)
        return 1
    try:
        data = json.loads(raw_input)
    except ValueError as e:
        # JSONDecodeError and UnicodeDecodeError are both ValueErrors
        print(f"policy-guard: malformed or empty JSON input: {e}", file=sys.stderr)
        return 1

    try:
        hooks = config.load_hooks_config()
    except ConfigError as e:
        print(f"policy-guard: {e}", file=sys.stderr)
        return 1

    decision = router.route(data, hooks, os.getcwd())
    if decision.stderr:
        print(decision.stderr, file=sys.stderr)
    return decision.exit_code


def main():
    sys.exit(run())


if __name__ == "__main__":
    main()

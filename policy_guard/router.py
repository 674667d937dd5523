"""Validate one tool event and run it through the enabled rules."""

import datetime
from pathlib import Path
from typing import NamedTuple

from policy_guard import audit, rules
from policy_guard.errors import SchemaMismatch
from policy_guard.git import GitProbe
from policy_guard.schemas import BashInput, parse_event
from policy_guard.shell import MAX_DEPTH, parse

# Commands longer than this are blocked unanalyzed
MAX_COMMAND_LENGTH = 100_000

# Rules that only observe and never block
_OBSERVERS = frozenset({"logToolUse"})


class Decision(NamedTuple):
    exit_code: int
    stderr: str = ""


ALLOW = Decision(0)


def _unanalyzable(command):
    """``(rule, message)`` when ``command`` cannot be fully analyzed."""
    if len(command) > MAX_COMMAND_LENGTH:
        return (
            "command-too-large",
            "Command too large for policy analysis. Split it into smaller calls.",
        )
    if parse(command).truncated:
        return (
            "command-too-deep",
            f"Command substitutions nested more than {MAX_DEPTH} levels deep cannot be analyzed.\n"
            "Flatten the command or split it into smaller calls.",
        )
    return None


def route(raw_event, hooks, cwd, *, git=None, today=None, home=None):
    """Decide one tool call.

    ``hooks`` is the resolved flag map; ``git``, ``today`` and ``home`` are
    injectable for tests. Returns the first violation as ``Decision(2, msg)``,
    ``Decision(1, diagnostic)`` for malformed input, otherwise ALLOW.
    """
    try:
        event = parse_event(raw_event)
    except SchemaMismatch as e:
        return Decision(1, str(e))

    applicable = rules.applicable_rules(event.tool_name, hooks)
    if not applicable:
        return ALLOW

    command = event.tool_input.command if isinstance(event.tool_input, BashInput) else None
    if command is not None and any(rule.flag not in _OBSERVERS for rule in applicable):
        refusal = _unanalyzable(command)
        if refusal is not None:
            audit.log_decision(event, refusal[0], "blocked", command[:200])
            return Decision(2, refusal[1])

    ctx = rules.RuleContext(
        event=event,
        cwd=cwd,
        hooks=hooks,
        git=git if git is not None else GitProbe(cwd),
        today=today if today is not None else datetime.date.today(),
        home=home if home is not None else str(Path.home()),
    )
    for rule in applicable:
        violation = rule.evaluate(ctx)
        if violation is not None:
            audit.log_decision(event, rule.flag, "blocked", command)
            return Decision(violation.exit_code, violation.message)
    audit.log_decision(event, None, "allowed", command)
    return ALLOW

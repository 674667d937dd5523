"""Fact queries over raw shell command text.

Every function takes the command string, parses it through
:func:`policy_guard.shell.parse` (cached) and answers one question. They are
pure and total: malformed input yields empty results, never an exception.
Unless noted, only depth-0 segments are inspected.
"""

import re
from typing import NamedTuple

from policy_guard.shell import CHAIN_OPERATORS, OPERATOR, REDIRECT, WORD, parse

FILTER_COMMANDS = frozenset({"grep", "head", "tail", "awk", "sed", "cut", "sort", "uniq", "wc", "tr"})

# git global options that consume the next argument
_GIT_OPTIONS_WITH_VALUE = frozenset(
    {"-C", "-c", "--git-dir", "--work-tree", "--namespace", "--super-prefix", "--config-env"}
)
# git commit short options whose value may follow in the next argument
_COMMIT_OPTIONS_WITH_VALUE = "mFCct"
_COMMIT_SHORT_FLAGS = {"--no-verify": "n"}


def _long_options(names):
    """``--name`` and its ``--no-name`` negation for each option name."""
    return frozenset(f"--{prefix}{name}" for name in names.split() for prefix in ("", "no-"))


# Long options git accepts, used to resolve unambiguous abbreviations
_ADD_LONG_OPTIONS = _long_options(
    "dry-run verbose interactive patch edit force update renormalize intent-to-add all"
    " ignore-removal refresh ignore-errors ignore-missing sparse chmod pathspec-from-file"
    " pathspec-file-nul"
)
_COMMIT_LONG_OPTIONS = _long_options(
    "quiet verbose file author date message reedit-message reuse-message fixup squash"
    " reset-author trailer signoff template edit cleanup status gpg-sign all include"
    " interactive patch only verify no-verify dry-run short branch ahead-behind porcelain"
    " long null amend post-rewrite untracked-files pathspec-from-file pathspec-file-nul"
    " allow-empty allow-empty-message"
)

_SHORT_CLUSTER = re.compile(r"-[A-Za-z]+")


class BranchCreation(NamedTuple):
    subcommand: str
    branch: str
    start_point: "str | None"


def command_segments(cmd, *names, top_level=True):
    """Segments whose command name is one of ``names`` (any name if empty)."""
    parsed = parse(cmd)
    segments = parsed.top_level if top_level else parsed.segments
    return [s for s in segments if s.name and (not names or s.name in names)]


def extract_command_names(cmd):
    """Command name of every segment at every substitution depth."""
    return {segment.name for segment in parse(cmd).segments if segment.name}


def has_chain_operators(cmd):
    tokens = [t for t in parse(cmd).tokens if t.scope == 0]
    for i, token in enumerate(tokens):
        if token.kind != OPERATOR or token.value not in CHAIN_OPERATORS:
            continue
        if token.value != "\n":
            return True
        # a trailing newline separates nothing
        if any(t.kind != OPERATOR for t in tokens[i + 1 :]):
            return True
    return False


def get_piped_filter_command(cmd):
    """First filter command fed by a pipe (a non-first pipeline stage)."""
    for pipeline in parse(cmd).pipelines():
        for segment in pipeline[1:]:
            if segment.name in FILTER_COMMANDS:
                return segment.name
    return None


# ── git ──


def _git_subcommand(segment):
    """Return ``(index, name)`` of the git subcommand within ``segment.args``."""
    args = segment.args
    i = 0
    while i < len(args):
        value = args[i].value
        if value in _GIT_OPTIONS_WITH_VALUE:
            i += 2
        elif value.startswith("-"):
            i += 1
        else:
            return i, value
    return None, None


def _git_subcommand_args(cmd, subcommand, top_level=True):
    for segment in command_segments(cmd, "git", top_level=top_level):
        index, name = _git_subcommand(segment)
        if name == subcommand:
            yield segment.args[index + 1 :]


def get_git_change_directory_path(cmd):
    """Path given to ``git -C``; ``""`` when the flag has no argument."""
    for segment in command_segments(cmd, "git"):
        args = segment.args
        i = 0
        while i < len(args):
            arg = args[i]
            if arg.literal:
                i += 1
                continue
            if arg.value == "-C":
                return args[i + 1].value if i + 1 < len(args) else ""
            if arg.value in _GIT_OPTIONS_WITH_VALUE:
                i += 2
            elif arg.value.startswith("-"):
                i += 1
            else:
                break
    return None


def has_git_change_directory_flag(cmd):
    return get_git_change_directory_path(cmd) is not None


def get_git_branch_start_point(cmd):
    """Parse ``git checkout -b|-B`` / ``git switch -c|-C`` into a BranchCreation.

    Returns None when the command does not create a branch.
    """
    for segment in command_segments(cmd, "git"):
        index, subcommand = _git_subcommand(segment)
        if subcommand == "checkout":
            flags = ("-b", "-B")
        elif subcommand == "switch":
            flags = ("-c", "-C", "--create", "--force-create")
        else:
            continue
        parts = [a.value for a in segment.args[index + 1 :]]
        branch = None
        start = None
        i = 0
        while i < len(parts):
            part = parts[i]
            if part == "--":
                i += 1
                continue
            if branch is None and part in flags:
                if i + 1 >= len(parts):
                    break
                branch = parts[i + 1]
                i += 2
                continue
            if branch is None and part.startswith(("--create=", "--force-create=")):
                branch = part.split("=", 1)[1]
            elif part.startswith("-"):
                pass
            elif branch is None:
                # positional before the create flag: plain checkout
                break
            elif start is None:
                start = part
            i += 1
        if branch:
            return BranchCreation(subcommand, branch, start)
    return None


def get_git_remote_set_url(cmd):
    """``(remote, new_url)`` for ``git remote set-url <remote> <url>``."""
    for args in _git_subcommand_args(cmd, "remote"):
        values = [a.value for a in args]
        if values[:1] != ["set-url"] or "--delete" in values:
            continue
        positional = [v for v in values[1:] if not v.startswith("-")]
        if len(positional) >= 2:
            return positional[0], positional[1]
    return None


def _is_long_option(value, option, known):
    """True if ``value`` is ``option`` or a prefix git expands only to it."""
    if value == option:
        return True
    if len(value) < 3 or not option.startswith(value):
        return False
    return not any(other != option and other.startswith(value) for other in known)


def has_git_add_all(cmd):
    """True for ``git add -A`` / ``--all`` / ``--no-ignore-removal`` at any depth."""
    for args in _git_subcommand_args(cmd, "add", top_level=False):
        for arg in args:
            if arg.literal:
                continue
            if arg.value == "--":
                break
            if any(
                _is_long_option(arg.value, option, _ADD_LONG_OPTIONS)
                for option in ("--all", "--no-ignore-removal")
            ):
                return True
            if _SHORT_CLUSTER.fullmatch(arg.value) and "A" in arg.value:
                return True
    return False


def has_git_commit_flag(cmd, flag):
    """True if a ``git commit`` segment at any depth carries ``flag``.

    Short spellings are recognized inside option clusters (``-nm msg``) and
    long ones in any abbreviation git accepts (``--amen``).
    """
    short = _COMMIT_SHORT_FLAGS.get(flag)
    for args in _git_subcommand_args(cmd, "commit", top_level=False):
        skip_next = False
        for arg in args:
            if skip_next:
                skip_next = False
                continue
            if arg.literal:
                continue
            value = arg.value
            if value == "--":
                break
            if _is_long_option(value, flag, _COMMIT_LONG_OPTIONS):
                return True
            if _SHORT_CLUSTER.fullmatch(value):
                for j, letter in enumerate(value[1:]):
                    if letter == short:
                        return True
                    if letter in _COMMIT_OPTIONS_WITH_VALUE:
                        # the rest of the cluster, or the next argument, is the value
                        skip_next = j == len(value) - 2
                        break
    return False


# ── cargo / yarn ──


def _long_option_value(cmd, command, option):
    for segment in command_segments(cmd, command):
        args = segment.args
        for i, arg in enumerate(args):
            if arg.literal:
                continue
            if arg.value == option:
                return args[i + 1].value if i + 1 < len(args) else ""
            if arg.value.startswith(option + "="):
                return arg.value.split("=", 1)[1]
    return None


def get_cargo_manifest_path(cmd):
    return _long_option_value(cmd, "cargo", "--manifest-path")


def has_cargo_manifest_path_flag(cmd):
    return get_cargo_manifest_path(cmd) is not None


def get_yarn_cwd(cmd):
    return _long_option_value(cmd, "yarn", "--cwd")


def has_yarn_cwd_flag(cmd):
    return get_yarn_cwd(cmd) is not None


# ── paths ──


def _find_path_under(cmd, base):
    base = base.rstrip("/")
    if not base:
        return None
    prefix = base + "/"
    for segment in parse(cmd).top_level:
        for token in segment.tokens:
            word = token.target if token.kind == REDIRECT else token
            if word is None or word.kind != WORD or word.literal:
                continue
            if word.value == base or word.value.startswith(prefix):
                return word.value
    return None


def find_absolute_path_under_cwd(cmd, base):
    """First word that is ``base`` or a path below it (``base-other`` is not)."""
    return _find_path_under(cmd, base)


def find_absolute_path_under_home(cmd, base):
    return _find_path_under(cmd, base)


# ── everything else ──


def has_bash_command_flag(cmd):
    """True for ``bash -c`` / ``sh -c``, including clusters such as ``-ec``."""
    for segment in command_segments(cmd, "bash", "sh"):
        args = segment.args
        i = 0
        while i < len(args):
            value = args[i].value
            if args[i].literal or value == "--" or value[:1] not in ("-", "+"):
                break
            if value in ("-o", "+o", "-O", "+O"):
                i += 2
                continue
            if value.startswith("-") and _SHORT_CLUSTER.fullmatch(value) and "c" in value:
                return True
            i += 1
    return False


def get_leading_cd_target(cmd):
    """Target of a leading ``cd <dir>`` that is chained to more commands."""
    segments = parse(cmd).top_level
    if len(segments) < 2:
        return None
    first = segments[0]
    if first.name != "cd" or first.after not in ("&&", ";"):
        return None
    args = first.args
    if len(args) != 1:
        return None
    return args[0].value


def get_find_exec_command(cmd):
    """Command run by ``find -exec``/``-execdir`` at any depth."""
    for segment in command_segments(cmd, "find", top_level=False):
        args = segment.args
        for i, arg in enumerate(args):
            if not arg.literal and arg.value in ("-exec", "-execdir"):
                return args[i + 1].value if i + 1 < len(args) else ""
    return None


def has_find_delete(cmd):
    return any(
        arg.value == "-delete" and not arg.literal
        for segment in command_segments(cmd, "find", top_level=False)
        for arg in segment.args
    )


def get_find_args(cmd):
    """Arguments of the first top-level ``find``, or None."""
    for segment in command_segments(cmd, "find"):
        return [a.value for a in segment.args]
    return None


def get_grep_invocation(cmd):
    """``(name, args)`` of a top-level grep/rg that reads files, not a pipe."""
    for segment in command_segments(cmd, "grep", "rg"):
        if not segment.piped:
            return segment.name, [a.value for a in segment.args]
    return None


def get_ls_args(cmd):
    for segment in command_segments(cmd, "ls"):
        return [a.value for a in segment.args]
    return None

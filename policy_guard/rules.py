"""Policy rule catalog.

Each rule is a record in RULES: (flag, tools, evaluate, description,
recommended). The router walks the table in order and stops at the first
violation, so table order is rule precedence. ``evaluate`` receives a
RuleContext and returns a Violation or None.
"""

import datetime
import os
import re
from dataclasses import dataclass
from typing import Callable, NamedTuple

from policy_guard import analyzer, audit
from policy_guard.schemas import BashInput

BASH = frozenset({"Bash"})
WEB_SEARCH = frozenset({"WebSearch"})
WEB_FETCH = frozenset({"WebFetch"})

FILE_OPERATION_COMMANDS = ("cat", "sed", "head", "tail", "awk")
# Years from 2020 on; anything earlier reads as historical
_RECENT_YEAR = re.compile(r"\b(20[2-9]\d)\b")

READ_ONLY_TOOLS = frozenset(
    {"Grep", "LS", "WebFetch", "Glob", "NotebookRead", "WebSearch", "BashOutput"}
)
INTERNAL_TOOLS = frozenset({"TodoWrite", "Task", "AskUserQuestion"})

# Config keys that tune rules rather than enable one
CONFIG_ONLY_KEYS = {
    "logReadOnlyToolUse": "Include read-only tools (Grep, Glob, WebFetch, ...) in logToolUse",
    "logPrompts": "Accepted for compatibility; prompts are logged by a separate hook",
}


class Violation(NamedTuple):
    message: str
    exit_code: int = 2


class Rule(NamedTuple):
    flag: str
    tools: "frozenset | None"
    evaluate: Callable
    description: str
    recommended: bool = True


@dataclass
class RuleContext:
    event: object
    cwd: str
    hooks: object
    git: object
    today: datetime.date
    home: str

    @property
    def command(self):
        tool_input = self.event.tool_input
        return tool_input.command if isinstance(tool_input, BashInput) else ""


def _resolve(path, cwd):
    return os.path.realpath(os.path.join(cwd, os.path.expanduser(path)))


def _is_cwd(path, cwd):
    return bool(path) and _resolve(path, cwd) == os.path.realpath(cwd)


def _tilde(path, home):
    home = home.rstrip("/")
    if path == home or path.startswith(home + "/"):
        return "~" + path[len(home) :]
    return path


# ── git ──


def ban_git_c(ctx):
    path = analyzer.get_git_change_directory_path(ctx.command)
    if path is None:
        return None
    if _is_cwd(path, ctx.cwd):
        return Violation(
            f"git -C {path} is not needed: {path} is already the current working directory.\n"
            "Run the git command without -C."
        )
    return Violation(
        "git -C is not allowed.\n"
        "Running git commands in a different directory is not permitted. "
        "cd to the target directory in its own Bash call, then run git there."
    )


def ban_git_checkout_redundant_start_point(ctx):
    creation = analyzer.get_git_branch_start_point(ctx.command)
    if creation is None or creation.start_point is None:
        return None
    # Textual precondition met; only now ask git.
    if ctx.git.head_is_detached() is not True:
        return None
    head = ctx.git.resolve_ref("HEAD")
    if head is None or ctx.git.resolve_ref(creation.start_point) != head:
        return None
    flag = "-b" if creation.subcommand == "checkout" else "-c"
    usage = f"git {creation.subcommand} {flag} <branch-name>"
    return Violation(
        f"Unnecessary start-point in git {creation.subcommand} {flag}.\n"
        f"You are already on a detached HEAD at {creation.start_point}.\n"
        f"Just use: {usage}\n"
        f"Instead of: {usage} {creation.start_point}"
    )


def ban_git_add_all(ctx):
    if not analyzer.has_git_add_all(ctx.command):
        return None
    return Violation(
        "git add -A/--all/--no-ignore-removal is not allowed.\n"
        "Stage specific files instead: git add <path> ..."
    )


def ban_git_commit_amend(ctx):
    if not analyzer.has_git_commit_flag(ctx.command, "--amend"):
        return None
    return Violation(
        "git commit --amend is not allowed.\n"
        "Amending rewrites history. Create a new commit instead."
    )


def ban_git_commit_no_verify(ctx):
    if not analyzer.has_git_commit_flag(ctx.command, "--no-verify"):
        return None
    return Violation(
        "git commit --no-verify is not allowed.\n"
        "Pre-commit hooks must run. Fix the reported problems and commit again."
    )


def _normalize_git_url(url):
    """Return ``(scheme, "host/path")`` for ssh and https remotes, else None."""
    url = url.strip()
    m = re.fullmatch(r"(?:ssh://)?[\w.-]+@([\w.-]+)[:/](?:\d+/)?(.+?)(?:\.git)?/?", url)
    if m:
        return "ssh", f"{m.group(1).lower()}/{m.group(2)}"
    m = re.fullmatch(r"https?://(?:[^@/]+@)?([\w.-]+)(?::\d+)?/(.+?)(?:\.git)?/?", url)
    if m:
        return "https", f"{m.group(1).lower()}/{m.group(2)}"
    return None


def ban_git_remote_set_url(ctx):
    found = analyzer.get_git_remote_set_url(ctx.command)
    if found is None:
        return None
    remote, url = found
    new = _normalize_git_url(url)
    if new is None or new[0] != "https":
        return None
    current_url = ctx.git.remote_url(remote)
    current = _normalize_git_url(current_url) if current_url else None
    if current != ("ssh", new[1]):
        return None
    return Violation(
        "Changing git remote URL from SSH to HTTPS is not allowed.\n"
        f"Remote {remote} uses SSH ({current_url}). Keep the SSH URL; "
        "authentication problems should be fixed in the SSH setup."
    )


# ── other commands ──


def ban_cargo_manifest_path(ctx):
    path = analyzer.get_cargo_manifest_path(ctx.command)
    if path is None:
        return None
    lines = [
        "cargo --manifest-path is not allowed.",
        "Running cargo commands with a different manifest path is not permitted.",
    ]
    if path:
        directory = os.path.dirname(path) or "."
        lines.append(f"cd {directory} in its own Bash call, then run cargo there.")
    return Violation("\n".join(lines))


def ban_yarn_cwd(ctx):
    path = analyzer.get_yarn_cwd(ctx.command)
    if path is None:
        return None
    lines = [
        "yarn --cwd is not allowed.",
        "Running yarn commands in a different directory is not permitted.",
    ]
    if path:
        lines.append(f"cd {path} in its own Bash call, then run yarn there.")
    return Violation("\n".join(lines))


def ban_background_bash(ctx):
    if ctx.event.tool_input.run_in_background is not True:
        return None
    return Violation(
        "Running bash commands in background is not allowed.\n"
        "Run the command in the foreground and wait for it to finish."
    )


def ban_bash_minus_c(ctx):
    if not analyzer.has_bash_command_flag(ctx.command):
        return None
    return Violation(
        "Using bash -c or sh -c is not allowed.\n"
        "Run the command directly instead of wrapping it in another shell."
    )


def ban_command_chaining(ctx):
    if not analyzer.has_chain_operators(ctx.command):
        return None
    target = analyzer.get_leading_cd_target(ctx.command)
    if target is not None and _is_cwd(target, ctx.cwd):
        return Violation(
            f"cd {target} is not needed: {target} is already the current working directory.\n"
            "Drop the cd and run the remaining command on its own."
        )
    return Violation(
        "Chaining bash commands with &&, ||, ; or newlines is not allowed.\n"
        "Run each command in its own Bash call."
    )


def _is_heredoc_cat(segment):
    heredoc = any(r.op in ("<<", "<<-") for r in segment.redirects)
    return heredoc and all(a.value == "-" for a in segment.args)


def _is_tail_offset(segment):
    values = [a.value for a in segment.args]
    return (
        len(values) == 2
        and re.fullmatch(r"-\d+", values[0]) is not None
        and not values[1].startswith("-")
    )


def ban_file_operation_commands(ctx):
    found = []
    segments = analyzer.command_segments(ctx.command, *FILE_OPERATION_COMMANDS, top_level=False)
    for segment in segments:
        if segment.name == "cat" and _is_heredoc_cat(segment):
            continue
        if segment.name == "tail" and _is_tail_offset(segment):
            continue
        if segment.name not in found:
            found.append(segment.name)
    if not found:
        return None
    return Violation(
        "Using bash commands (cat, sed, head, tail, awk) for file operations is not allowed.\n"
        f"Found: {', '.join(found)}\n"
        "Use the dedicated tools instead:\n"
        "  - Read to view files (offset/limit instead of head/tail)\n"
        "  - Edit or MultiEdit to change files (instead of sed/awk)\n"
        "  - Write to create files\n"
        "  - Grep to search file contents\n"
        "Still allowed: cat <<EOF heredocs and tail -<N> <file>."
    )


def ban_pipe_to_filter(ctx):
    name = analyzer.get_piped_filter_command(ctx.command)
    if name is None:
        return None
    return Violation(
        f"Piping output to {name} is not allowed.\n"
        "Run the command on its own; the full output is returned to you. "
        "Use the Grep or Read tools on files instead of filtering through a pipe."
    )


# ── find / grep / ls ──


# find predicates the Glob tool cannot express
_FIND_UNSUPPORTED_FLAGS = frozenset(
    """
    -type -mtime -ctime -atime -newer -newermt -newerct -newerat -size -empty
    -user -group -perm -readable -writable -executable -links -inum -samefile
    -regex -iregex -delete -print0 -printf -ls -fls -exec -execdir -ok -okdir
    -prune -quit
    """.split()
)

# grep/rg flags the Grep tool can express
_GREP_SHORT_FLAGS = frozenset("ABCinlcUerR")
_GREP_SHORT_WITH_VALUE = frozenset("ABCe")
_GREP_LONG_FLAGS = frozenset(
    """
    --after-context --before-context --context --ignore-case --line-number
    --files-with-matches --count --multiline --multiline-dotall --glob --type
    --regexp --recursive --include --no-filename --with-filename --color
    --colour --no-line-number
    """.split()
)
_GREP_LONG_WITH_VALUE = frozenset(
    "--after-context --before-context --context --glob --type --regexp --include".split()
)


def ban_find_exec(ctx):
    command = analyzer.get_find_exec_command(ctx.command)
    if command is None:
        return None
    if os.path.basename(command) in ("grep", "egrep", "fgrep"):
        return Violation(
            "find -exec grep is not allowed.\n"
            "Use rg (ripgrep) or the Grep tool instead; both search recursively."
        )
    return Violation(
        "find -exec is not allowed.\n"
        "Use the Glob tool to find files, then act on them with separate tool calls."
    )


def ban_find_delete(ctx):
    if not analyzer.has_find_delete(ctx.command):
        return None
    return Violation(
        "find -delete is not allowed.\n"
        "List the files with the Glob tool first and remove them explicitly."
    )


def ban_find_command(ctx):
    args = analyzer.get_find_args(ctx.command)
    if args is None or any(a.split("=", 1)[0] in _FIND_UNSUPPORTED_FLAGS for a in args):
        return None
    return Violation(
        "Using find to search for files by name is not allowed.\n"
        "Use the builtin Glob tool instead (e.g. pattern '**/*.py')."
    )


def _grep_needs_shell(args):
    """True if any flag has no Grep tool equivalent."""
    i = 0
    while i < len(args):
        arg = args[i]
        if arg == "--":
            return False
        if arg.startswith("--"):
            name = arg.split("=", 1)[0]
            if name not in _GREP_LONG_FLAGS:
                return True
            if name in _GREP_LONG_WITH_VALUE and "=" not in arg:
                i += 1
        elif arg.startswith("-") and len(arg) > 1:
            letters = arg[1:]
            for j, letter in enumerate(letters):
                if letter not in _GREP_SHORT_FLAGS:
                    return True
                if letter in _GREP_SHORT_WITH_VALUE:
                    if j == len(letters) - 1:
                        i += 1
                    break
        i += 1
    return False


def ban_grep_command(ctx):
    invocation = analyzer.get_grep_invocation(ctx.command)
    if invocation is None:
        return None
    name, args = invocation
    if _grep_needs_shell(args):
        return None
    return Violation(
        f"Using {name} to search file contents is not allowed.\n"
        "Use the builtin Grep tool instead; it supports the same flags "
        "(-A/-B/-C context, -i, -n, glob and type filters, multiline)."
    )


def ban_ls_command(ctx):
    args = analyzer.get_ls_args(ctx.command)
    if args is None or any(a.startswith("-") for a in args):
        return None
    return Violation(
        "Using ls to list files is not allowed.\n"
        "Use the builtin Glob tool instead (e.g. pattern '*' or 'src/**/*')."
    )


# ── paths / environment ──


def ban_absolute_paths(ctx):
    # cwd may be reached through a symlink; accept either spelling
    for base in dict.fromkeys((ctx.cwd, os.path.realpath(ctx.cwd))):
        path = analyzer.find_absolute_path_under_cwd(ctx.command, base)
        if path is None:
            continue
        relative = os.path.relpath(path, base)
        suggestion = "." if relative == "." else f"./{relative}"
        return Violation(
            f"Absolute path under cwd is not allowed: {path}\n"
            f"Use relative path instead: {suggestion}"
        )
    return None


def ban_home_dir_absolute_paths(ctx):
    if not ctx.home:
        return None
    path = analyzer.find_absolute_path_under_home(ctx.command, ctx.home)
    if path is None:
        return None
    return Violation(
        f"Home directory absolute path is not allowed: {path}\n"
        f"Use tilde expansion instead: {_tilde(path, ctx.home)}"
    )


_LOCKFILES = (
    ("yarn.lock", "yarn"),
    ("bun.lockb", "bun"),
    ("bun.lock", "bun"),
    ("pnpm-lock.yaml", "pnpm"),
    ("package-lock.json", "npm"),
)
_PACKAGE_MANAGERS = {
    "npm": "npm",
    "npx": "npm",
    "yarn": "yarn",
    "bun": "bun",
    "bunx": "bun",
    "pnpm": "pnpm",
    "pnpx": "pnpm",
}


def _project_package_manager(cwd):
    for lockfile, manager in _LOCKFILES:
        if os.path.exists(os.path.join(cwd, lockfile)):
            return manager, lockfile
    return None


def ban_wrong_package_manager(ctx):
    used = [s.name for s in analyzer.command_segments(ctx.command, *_PACKAGE_MANAGERS)]
    if not used:
        return None
    project = _project_package_manager(ctx.cwd)
    if project is None:
        return None
    expected, lockfile = project
    for name in used:
        if _PACKAGE_MANAGERS[name] != expected:
            return Violation(
                f"Wrong package manager: {name} used in a {expected} project.\n"
                f"This project has {lockfile}. Use {expected} instead."
            )
    return None


_GITHUB_URL_PATTERNS = (
    re.compile(r"^https?://raw\.githubusercontent\.com/([^/]+)/([^/]+)/"),
    re.compile(r"^https?://github\.com/([^/]+)/([^/]+)/(?:blob|tree)/"),
)


def prefer_local_github_repo(ctx):
    url = ctx.event.tool_input.url
    for pattern in _GITHUB_URL_PATTERNS:
        m = pattern.match(url)
        if m:
            break
    else:
        return None
    repo = m.group(2)
    local = os.path.join(os.path.dirname(os.path.realpath(ctx.cwd)), repo)
    if not os.path.isdir(os.path.join(local, ".git")):
        return None
    return Violation(
        f'The repository "{repo}" is cloned locally at {_tilde(local, ctx.home)}\n'
        "Read the files directly with the Read, Grep and Glob tools instead of fetching them."
    )


def ban_outdated_year_in_search(ctx):
    current = ctx.today.year
    m = _RECENT_YEAR.search(ctx.event.tool_input.query)
    if m is None or int(m.group(1)) >= current:
        return None
    return Violation(
        f'Web searches containing outdated year "{m.group(1)}" are not allowed.\n'
        f"The current year is {current}. Search for current information instead."
    )


def log_tool_use(ctx):
    name = ctx.event.tool_name
    if name in INTERNAL_TOOLS or name.startswith("mcp__"):
        return None
    if name in READ_ONLY_TOOLS and not ctx.hooks.get("logReadOnlyToolUse", False):
        return None
    audit.record_tool_use(ctx.event)
    return None


RULES = (
    Rule("banGitC", BASH, ban_git_c, "Block git -C <path>"),
    Rule(
        "banGitCheckoutRedundantStartPoint",
        BASH,
        ban_git_checkout_redundant_start_point,
        "Block a start-point equal to the detached HEAD in git checkout -b / switch -c",
    ),
    Rule("banCargoManifestPath", BASH, ban_cargo_manifest_path, "Block cargo --manifest-path"),
    Rule("banYarnCwd", BASH, ban_yarn_cwd, "Block yarn --cwd"),
    Rule("banGitAddAll", BASH, ban_git_add_all, "Block git add -A / --all"),
    Rule("banGitCommitAmend", BASH, ban_git_commit_amend, "Block git commit --amend"),
    Rule("banGitCommitNoVerify", BASH, ban_git_commit_no_verify, "Block git commit --no-verify"),
    Rule(
        "banGitRemoteSetUrl",
        BASH,
        ban_git_remote_set_url,
        "Block switching a git remote from SSH to HTTPS",
    ),
    Rule("banBackgroundBash", BASH, ban_background_bash, "Block run_in_background Bash calls"),
    Rule("banBashMinusC", BASH, ban_bash_minus_c, "Block bash -c / sh -c"),
    Rule("banCommandChaining", BASH, ban_command_chaining, "Block &&, ||, ; and newline chains"),
    Rule(
        "banFileOperationCommands",
        BASH,
        ban_file_operation_commands,
        "Block cat/sed/head/tail/awk in favor of Read/Edit/Write",
    ),
    Rule(
        "banOutdatedYearInSearch",
        WEB_SEARCH,
        ban_outdated_year_in_search,
        "Block web searches naming a recent past year",
    ),
    Rule("banPipeToFilter", BASH, ban_pipe_to_filter, "Block piping into grep/head/tail/..."),
    Rule("banFindExec", BASH, ban_find_exec, "Block find -exec / -execdir"),
    Rule("banFindDelete", BASH, ban_find_delete, "Block find -delete"),
    Rule("banFindCommand", BASH, ban_find_command, "Block plain find in favor of Glob"),
    Rule("banGrepCommand", BASH, ban_grep_command, "Block grep/rg in favor of the Grep tool"),
    Rule("banLsCommand", BASH, ban_ls_command, "Block flagless ls in favor of Glob"),
    Rule("banAbsolutePaths", BASH, ban_absolute_paths, "Block absolute paths under cwd"),
    Rule(
        "banHomeDirAbsolutePaths",
        BASH,
        ban_home_dir_absolute_paths,
        "Block absolute paths under the home directory",
    ),
    Rule(
        "banWrongPackageManager",
        BASH,
        ban_wrong_package_manager,
        "Block a package manager that does not match the project's lock file",
    ),
    Rule(
        "preferLocalGithubRepo",
        WEB_FETCH,
        prefer_local_github_repo,
        "Block fetching GitHub files of a repository cloned next to cwd",
    ),
    Rule("logToolUse", None, log_tool_use, "Record every tool call in the audit log"),
)

RULE_FLAGS = tuple(rule.flag for rule in RULES)


def config_keys():
    """Every accepted hooks key mapped to its description."""
    keys = {rule.flag: rule.description for rule in RULES}
    keys.update(CONFIG_ONLY_KEYS)
    return keys


def applicable_rules(tool_name, hooks):
    """Enabled rules for ``tool_name``, in catalog order."""
    return [
        rule
        for rule in RULES
        if hooks.get(rule.flag, False) and (rule.tools is None or tool_name in rule.tools)
    ]

"""Narrow, fail-open queries about the git working tree.

Rules never shell out themselves; they ask a GitProbe. Any failure (not a
repository, git missing, timeout) reads as "unknown" and the dependent rule
does not apply.
"""

import subprocess

GIT_TIMEOUT = 5


class GitProbe:
    """Runs ``git`` in ``cwd``. Answers are memoized for the probe's lifetime."""

    def __init__(self, cwd, timeout=GIT_TIMEOUT):
        self.cwd = cwd
        self.timeout = timeout
        self._cache = {}

    def _run(self, *args):
        """Return ``(returncode, stdout)``, or None if git could not run."""
        if args in self._cache:
            return self._cache[args]
        try:
            proc = subprocess.run(
                ["git", *args],
                cwd=self.cwd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
            result = (proc.returncode, proc.stdout.strip())
        except (subprocess.SubprocessError, FileNotFoundError, OSError):
            result = None  # fail open
        self._cache[args] = result
        return result

    def is_inside_work_tree(self):
        return self._run("rev-parse", "--is-inside-work-tree") == (0, "true")

    def head_is_detached(self):
        """True/False, or None when unknown (not a repository, git missing)."""
        result = self._run("symbolic-ref", "-q", "HEAD")
        if result is None:
            return None
        if result[0] == 0:
            return False
        # exit 1: HEAD is not a symbolic ref; anything else is an error
        if result[0] == 1 and self.is_inside_work_tree():
            return True
        return None

    def resolve_ref(self, ref):
        """Commit id ``ref`` points to, or None."""
        if not ref or ref.startswith("-"):
            return None
        result = self._run("rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}")
        if result is None or result[0] != 0 or not result[1]:
            return None
        return result[1]

    def remote_url(self, name):
        if not name or name.startswith("-"):
            return None
        result = self._run("remote", "get-url", name)
        if result is None or result[0] != 0 or not result[1]:
            return None
        return result[1]

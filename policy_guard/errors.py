class PolicyGuardError(Exception):
    """Base class for engine errors (distinct from policy violations)."""


class SchemaMismatch(PolicyGuardError):
    """A known tool arrived with a malformed ``tool_input``, or the envelope is invalid."""


class ConfigError(PolicyGuardError):
    """The hooks configuration file is unreadable or has the wrong shape."""

"""
Exceptions raised by the permission checker

Only input and extraction problems are fatal. Resolution misses and oracle
failures are reported through result objects instead.
"""


class PermissionCheckError(Exception):
    """Base class for errors that abort a permission check"""
    pass


class PolicyParseError(PermissionCheckError):
    """Raised when the XML policy document cannot be parsed"""
    pass


class ArchiveExtractionError(PermissionCheckError):
    """Raised when the uploaded project archive cannot be extracted"""
    pass


class ConfigError(PermissionCheckError):
    """Raised when checker configuration is invalid"""
    pass

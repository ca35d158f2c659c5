"""
opwrap Error Taxonomy

Every supervisor-internal failure derives from OpwrapError and carries a
stable code. Messages name references, tools and contexts but never
secret values.
"""

from typing import List, Optional


class OpwrapError(Exception):
    """Base exception for all opwrap errors."""

    def __init__(self, message: str, *, code: str = "INTERNAL_ERROR"):
        super().__init__(message)
        self.code = code


# =============================================================================
# CONFIGURATION
# =============================================================================

class ConfigError(OpwrapError):
    """The opwrap configuration is unusable."""

    def __init__(self, message: str):
        super().__init__(message, code="CONFIG_INVALID")


# =============================================================================
# AUTHENTICATION
# =============================================================================

class AuthError(OpwrapError):
    """Authentication against the secret store failed."""

    def __init__(self, message: str, *, code: str = "AUTH_ERROR"):
        super().__init__(message, code=code)


class ExhaustedRetries(AuthError):
    """Interactive sign-in was rejected on every allowed attempt."""

    def __init__(self, attempts: int, last_reason: str = ""):
        message = f"Interactive sign-in failed after {attempts} attempts"
        if last_reason:
            message += f": {last_reason}"
        super().__init__(message, code="AUTH_EXHAUSTED_RETRIES")
        self.attempts = attempts
        self.last_reason = last_reason


class MissingServiceCredential(AuthError):
    """A non-interactive context has no service-account token."""

    def __init__(self, platform: Optional[str], env_var: str):
        super().__init__(
            f"No service account credential for {platform or 'ci'}: "
            f"set {env_var}",
            code="AUTH_MISSING_SERVICE_CREDENTIAL",
        )
        self.platform = platform
        self.env_var = env_var


class StoreRejected(AuthError):
    """The secret store refused a credential or session."""

    def __init__(self, reason: str):
        super().__init__(f"Secret store rejected the session: {reason}", code="AUTH_STORE_REJECTED")
        self.reason = reason


# =============================================================================
# TOOL PROFILES
# =============================================================================

class UnknownTool(OpwrapError):
    """No profile is registered for the requested tool."""

    def __init__(self, tool: str, known: Optional[List[str]] = None):
        message = f"Unknown tool: {tool}"
        if known:
            message += f" (known: {', '.join(sorted(known))})"
        super().__init__(message, code="UNKNOWN_TOOL")
        self.tool = tool


class ProfileError(OpwrapError):
    """A tool profile failed registration-time validation."""

    def __init__(self, tool: str, problem: str):
        super().__init__(f"Invalid profile for {tool}: {problem}", code="PROFILE_INVALID")
        self.tool = tool


# =============================================================================
# SCOPE
# =============================================================================

class SecretResolutionFailed(OpwrapError):
    """A vault reference could not be resolved."""

    def __init__(self, ref, reason: str = ""):
        uri = getattr(ref, "uri", str(ref))
        message = f"Could not resolve {uri}"
        if reason:
            message += f": {reason}"
        super().__init__(message, code="SECRET_RESOLUTION_FAILED")
        self.ref = ref
        self.reason = reason


class ScopeSetupFailed(OpwrapError):
    """The ephemeral scope could not be built."""

    def __init__(self, message: str):
        super().__init__(message, code="SCOPE_SETUP_FAILED")


class ProgramNotFound(ScopeSetupFailed):
    """The wrapped program is not on PATH."""

    def __init__(self, program: str):
        super().__init__(f"Program not found: {program}")
        self.program = program


class CleanupFailed(OpwrapError):
    """One or more teardown actions raised."""

    def __init__(self, labels: List[str]):
        super().__init__(f"Teardown failed for: {', '.join(labels)}", code="CLEANUP_FAILED")
        self.labels = labels


class WrappedToolFailed(OpwrapError):
    """The wrapped tool exited non-zero. Its status is forwarded as-is."""

    def __init__(self, tool: str, exit_code: int):
        super().__init__(f"{tool} exited with status {exit_code}", code="WRAPPED_TOOL_FAILED")
        self.tool = tool
        self.exit_code = exit_code


class SupervisorInterrupted(BaseException):
    """
    The supervisor received an interruption signal.

    Derives from BaseException, like KeyboardInterrupt, so that ordinary
    `except Exception` blocks do not swallow it.
    """

    def __init__(self, signum: int):
        super().__init__(f"Interrupted by signal {signum}")
        self.signum = signum

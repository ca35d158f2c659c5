"""
Session Manager

Owns the lifecycle of the authenticated session used to resolve secrets:
acquisition, caching, validation and sign-out.

Usage:
    from opwrap.session import SessionManager, FileHandleStore

    sessions = SessionManager(store, FileHandleStore(path), config)
    handle = sessions.acquire(classify())
"""

import logging
import os
from dataclasses import replace
from typing import Callable, Mapping, Optional

from ..context import ExecutionContext
from ..errors import AuthError, ExhaustedRetries, MissingServiceCredential, StoreRejected
from ..secrets.interface import SecretStore, SessionHandle, SessionSource
from .store import HandleStore

logger = logging.getLogger(__name__)

MAX_INTERACTIVE_ATTEMPTS = 3

RejectionCallback = Callable[[int, int, str], None]  # (attempt, max_attempts, reason)


class SessionManager:
    """
    Acquires and validates sessions against one secret store.

    Local contexts reuse a cached handle when the store still accepts it
    and otherwise sign in interactively. CI contexts authenticate a
    service-account token held in memory only and never touch the
    handle store.
    """

    def __init__(
        self,
        secret_store: SecretStore,
        handle_store: HandleStore,
        config: Optional[dict] = None,
        environ: Optional[Mapping[str, str]] = None,
        on_rejection: Optional[RejectionCallback] = None,
        interactive: bool = True,
        max_attempts: int = MAX_INTERACTIVE_ATTEMPTS
    ):
        """
        Args:
            secret_store: Backend used for every round trip
            handle_store: Persistence for local handles
            config: opwrap config (reads "account" and "service_account_env")
            environ: Environment holding the service-account token (default: os.environ)
            on_rejection: Called after each rejected interactive attempt
            interactive: If False, never prompt; a missing local session is an error
            max_attempts: Interactive attempts before giving up
        """
        config = config or {}
        self.secret_store = secret_store
        self.handle_store = handle_store
        self.environ = os.environ if environ is None else environ
        self.account = config.get("account")
        self.service_account_env = config.get("service_account_env") or "OP_SERVICE_ACCOUNT_TOKEN"
        self.on_rejection = on_rejection
        self.interactive = interactive
        self.max_attempts = max_attempts

    # =========================================================================
    # ACQUISITION
    # =========================================================================

    def acquire(self, context: ExecutionContext) -> SessionHandle:
        """
        Return a session valid for this context.

        Raises:
            ExhaustedRetries: Local sign-in rejected max_attempts times
            MissingServiceCredential: CI context without a service-account token
            StoreRejected: The store refused the service-account token
            AuthError: Local context with no valid cache and prompting disabled
        """
        if context.is_local:
            return self._acquire_local()
        return self._acquire_service_account(context)

    def _acquire_local(self) -> SessionHandle:
        cached = self.handle_store.load()
        if cached is not None:
            if self.validate(cached):
                logger.info("Reusing cached 1Password session")
                return replace(cached, cached=True)
            logger.info("Cached session expired, signing in again")
            self.handle_store.clear()

        if not self.interactive:
            raise AuthError("No valid cached session and interactive sign-in is disabled; run `opwrap login`")

        return self._sign_in()

    def _sign_in(self) -> SessionHandle:
        last_reason = ""
        for attempt in range(1, self.max_attempts + 1):
            try:
                token = self.secret_store.sign_in(self.account)
            except StoreRejected as e:
                last_reason = e.reason
                logger.warning(f"Sign-in attempt {attempt}/{self.max_attempts} rejected: {e.reason}")
                if self.on_rejection:
                    self.on_rejection(attempt, self.max_attempts, e.reason)
                continue

            handle = SessionHandle(
                token=token,
                source=SessionSource.INTERACTIVE,
                account=self.account,
            )
            self.handle_store.save(handle)
            logger.info("✅ Signed in to 1Password")
            return handle

        raise ExhaustedRetries(self.max_attempts, last_reason)

    def _acquire_service_account(self, context: ExecutionContext) -> SessionHandle:
        token = self.environ.get(self.service_account_env)
        if not token:
            raise MissingServiceCredential(context.platform, self.service_account_env)

        self.secret_store.authenticate_service_account(token)
        logger.info(f"Authenticated service account for {context}")
        return SessionHandle(token=token, source=SessionSource.SERVICE_ACCOUNT)

    # =========================================================================
    # VALIDATION / SIGN-OUT
    # =========================================================================

    def validate(self, handle: Optional[SessionHandle]) -> bool:
        """Live check with the store. No freshness shortcut."""
        if handle is None:
            return False
        return self.secret_store.validate(handle)

    def invalidate(self, handle: SessionHandle) -> None:
        """Sign the session out and drop the cached copy if it is this one."""
        self.secret_store.sign_out(handle)
        if not handle.is_interactive:
            return
        cached = self.handle_store.load()
        if cached is not None and cached.token == handle.token:
            self.handle_store.clear()
            logger.info("Cleared cached session")

    def status(self, context: ExecutionContext) -> dict:
        """
        Describe the session situation for this context without acquiring.

        Returns:
            Non-secret metadata: context, source, cached, valid, acquired_at
        """
        if context.is_local:
            handle = self.handle_store.load()
            return {
                "context": str(context),
                "source": SessionSource.INTERACTIVE.value,
                "cached": handle is not None,
                "valid": self.validate(handle),
                "acquired_at": handle.acquired_at.isoformat() if handle else None,
                "account": handle.account if handle else self.account,
            }

        present = bool(self.environ.get(self.service_account_env))
        return {
            "context": str(context),
            "source": SessionSource.SERVICE_ACCOUNT.value,
            "cached": False,
            "credential_env": self.service_account_env,
            "credential_present": present,
        }

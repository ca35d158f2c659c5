"""
1Password CLI Backend

Implements SecretStore by shelling out to the `op` CLI. Exports are
resolved by `op run` inside the spawned process, so secret values never
pass through opwrap's own environment.

Session tokens reach op through its environment (OP_SESSION_<user id>
or OP_SERVICE_ACCOUNT_TOKEN), never on the command line.
"""

import json
import logging
import os
import subprocess
from typing import Dict, List, Optional, Sequence, Tuple

from ...errors import SecretResolutionFailed, StoreRejected
from ..interface import Binding, SecretRef, SecretStore, SessionHandle

logger = logging.getLogger(__name__)

SERVICE_ACCOUNT_VAR = "OP_SERVICE_ACCOUNT_TOKEN"
SESSION_VAR_PREFIX = "OP_SESSION_"

ACCOUNT_KEYS = ("shorthand", "url", "email", "user_uuid", "account_uuid")


def _normalize(value) -> str:
    value = str(value or "").strip().lower()
    return value[len("https://"):] if value.startswith("https://") else value


class OpCliStore(SecretStore):
    """
    1Password backend driven through the op CLI.

    Config:
        op_binary: Path or name of the op executable (default: "op")
        store_timeout: Seconds allowed for non-interactive op calls (default: 60)
        service_account_env: Variable holding the service-account token
                             (default: "OP_SERVICE_ACCOUNT_TOKEN")
    """

    backend_type = "op-cli"

    def __init__(self, config: dict):
        super().__init__(config)
        self.op_binary = config.get("op_binary") or "op"
        self.timeout = config.get("store_timeout", 60)
        self.service_account_env = config.get("service_account_env", SERVICE_ACCOUNT_VAR)
        self._accounts: Optional[List[dict]] = None

    def _run_op(
        self,
        args: List[str],
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        interactive: bool = False
    ) -> Tuple[bool, str]:
        """
        Run an op CLI command.

        Interactive calls inherit stdin and stderr so op can prompt the
        human directly; only stdout is captured.

        Returns:
            (success, stdout on success or stderr on failure)
        """
        try:
            result = subprocess.run(
                [self.op_binary] + args,
                stdout=subprocess.PIPE,
                stderr=None if interactive else subprocess.PIPE,
                text=True,
                env=env,
                timeout=timeout
            )
        except subprocess.TimeoutExpired:
            return False, f"op timed out after {timeout}s"
        except FileNotFoundError:
            return False, f"op CLI not found: {self.op_binary}"

        if result.returncode == 0:
            return True, result.stdout
        reason = (result.stderr or "").strip() or f"op exited with status {result.returncode}"
        return False, reason

    # =========================================================================
    # SESSION ATTACHMENT
    # =========================================================================

    def _list_accounts(self) -> List[dict]:
        if self._accounts is None:
            success, output = self._run_op(["account", "list", "--format=json"], timeout=self.timeout)
            if not success:
                raise StoreRejected(f"could not list op accounts: {output}")
            try:
                accounts = json.loads(output or "[]")
            except json.JSONDecodeError as e:
                raise StoreRejected(f"unexpected output from op account list: {e}") from e
            self._accounts = [a for a in accounts if isinstance(a, dict)]
        return self._accounts

    def session_var(self, account: Optional[str] = None) -> str:
        """
        Name of the variable op reads an interactive session token from.

        Args:
            account: Shorthand, sign-in address, email or ID (default: the only account)

        Returns:
            OP_SESSION_<user id> for the matching account

        Raises:
            StoreRejected: If no single account matches
        """
        accounts = self._list_accounts()
        if account:
            wanted = _normalize(account)
            accounts = [a for a in accounts if wanted in {_normalize(a.get(k)) for k in ACCOUNT_KEYS}]

        if len(accounts) != 1 or not accounts[0].get("user_uuid"):
            found = "no" if not accounts else str(len(accounts))
            raise StoreRejected(
                f"{found} op account(s) match {account or 'the default account'}; "
                f"set \"account\" in the opwrap config"
            )
        return SESSION_VAR_PREFIX + accounts[0]["user_uuid"]

    def _session_env(self, handle: SessionHandle) -> Dict[str, str]:
        """Variables that attach an op process to this session."""
        if handle.is_interactive:
            return {self.session_var(handle.account): handle.token}
        return {SERVICE_ACCOUNT_VAR: handle.token}

    def _session_args(self, handle: SessionHandle) -> Tuple[List[str], Dict[str, str]]:
        """Flags and full environment for an op call under this session."""
        env = dict(os.environ)
        if handle.is_interactive:
            env.pop(SERVICE_ACCOUNT_VAR, None)
        env.update(self._session_env(handle))
        args = ["--account", handle.account] if handle.is_interactive and handle.account else []
        return args, env

    # =========================================================================
    # SecretStore
    # =========================================================================

    def sign_in(self, account: Optional[str] = None) -> str:
        args = ["signin", "--raw"]
        if account:
            args += ["--account", account]

        success, output = self._run_op(args, interactive=True)
        token = output.strip()
        if not success:
            raise StoreRejected(output)
        if not token:
            raise StoreRejected("op signin returned no session token")
        return token

    def authenticate_service_account(self, token: str) -> None:
        env = dict(os.environ)
        env[SERVICE_ACCOUNT_VAR] = token
        success, output = self._run_op(["whoami"], env=env, timeout=self.timeout)
        if not success:
            raise StoreRejected(output)

    def validate(self, handle: SessionHandle) -> bool:
        args, env = self._session_args(handle)
        success, output = self._run_op(args + ["whoami"], env=env, timeout=self.timeout)
        if not success:
            logger.info(f"Session not accepted by op: {output}")
        return success

    def sign_out(self, handle: SessionHandle) -> None:
        if not handle.is_interactive:
            return
        args, env = self._session_args(handle)
        success, output = self._run_op(args + ["signout"], env=env, timeout=self.timeout)
        if not success:
            logger.warning(f"op signout failed: {output}")

    def read(self, ref: SecretRef, handle: SessionHandle) -> str:
        args, env = self._session_args(handle)
        success, output = self._run_op(
            args + ["read", "--no-newline", ref.uri],
            env=env,
            timeout=self.timeout
        )
        if not success:
            raise SecretResolutionFailed(ref, output)
        return output

    def run_with_exports(
        self,
        bindings: Sequence[Binding],
        argv: List[str],
        handle: SessionHandle
    ) -> Tuple[List[str], Dict[str, str]]:
        # op run replaces each op:// reference in its environment with the
        # resolved value before exec'ing argv.
        additions = {destination: ref.uri for destination, ref in bindings}

        account_flags = []
        if handle.is_interactive:
            additions.update(self._session_env(handle))
            if handle.account:
                account_flags = ["--account", handle.account]
        elif self.service_account_env != SERVICE_ACCOUNT_VAR:
            # Under the default variable name the token is already inherited
            # from the caller's environment.
            additions.update(self._session_env(handle))

        return [self.op_binary, "run"] + account_flags + ["--"] + list(argv), additions

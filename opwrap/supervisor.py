"""
Credential-Injection Supervisor

Runs one wrapped tool with its credentials:

    classify context -> resolve profile -> acquire session
        -> build scope (cleanup registered) -> spawn child -> tear down

Usage:
    from opwrap.supervisor import Supervisor

    result = Supervisor().run("git", ["push", "origin", "main"])
    sys.exit(result.exit_code)
"""

import logging
import os
import subprocess
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence

from .cleanup import CleanupGuarantor
from .config import artifact_dir, backend_config, load_config, session_cache_path
from .context import LOCAL, ExecutionContext, classify, signals_with_extras
from .errors import ProgramNotFound, ScopeSetupFailed, SupervisorInterrupted, WrappedToolFailed
from .registry import ToolRegistry
from .scope import Invocation, ScopeBuilder
from .secrets import SecretStore, SessionHandle, create_store
from .session import FileHandleStore, HandleStore, SessionManager
from .session.manager import RejectionCallback

logger = logging.getLogger(__name__)


@dataclass
class ExecutionResult:
    """Outcome of one wrapped-tool run. Output is set only when captured."""
    tool: str
    exit_code: int
    stdout: Optional[str] = None
    stderr: Optional[str] = None


def exit_status(returncode: int) -> int:
    """Shell-style status: a child killed by signal N reports 128 + N."""
    if returncode < 0:
        return 128 - returncode
    return returncode


class Supervisor:
    """
    Wires classifier, registry, session manager, scope builder and
    cleanup guarantor together for wrapped-tool invocations.
    """

    def __init__(
        self,
        config: Optional[dict] = None,
        registry: Optional[ToolRegistry] = None,
        environ: Optional[Mapping[str, str]] = None,
        stores: Optional[Dict[str, SecretStore]] = None,
        handle_store: Optional[HandleStore] = None,
        on_rejection: Optional[RejectionCallback] = None,
        interactive: bool = True
    ):
        """
        Args:
            config: opwrap config (default: load_config())
            registry: Tool profiles (default: built from config["tools"])
            environ: Caller environment (default: os.environ)
            stores: Secret stores keyed by context kind, "local" / "ci"
                    (default: created from config["backends"])
            handle_store: Local session cache (default: file at config["session_cache"])
            on_rejection: Surfaces interactive sign-in rejections to the human
            interactive: Allow prompting for sign-in
        """
        self.config = config if config is not None else load_config()
        self.environ = os.environ if environ is None else environ
        self.registry = registry or ToolRegistry.from_config(self.config.get("tools"))
        self.stores: Dict[str, SecretStore] = dict(stores or {})
        self.handle_store = handle_store or FileHandleStore(session_cache_path(self.config))
        self.on_rejection = on_rejection
        self.interactive = interactive
        self.child_grace_seconds = self.config.get("child_grace_seconds", 5)

    # =========================================================================
    # WIRING
    # =========================================================================

    def context(self) -> ExecutionContext:
        """Classify afresh on every call; the environment may have changed."""
        return classify(self.environ, signals_with_extras(self.config.get("extra_platforms")))

    def store_for(self, context: ExecutionContext) -> SecretStore:
        kind = "local" if context.is_local else "ci"
        if kind not in self.stores:
            self.stores[kind] = create_store(backend_config(self.config, kind))
        return self.stores[kind]

    def sessions_for(self, context: ExecutionContext) -> SessionManager:
        return SessionManager(
            self.store_for(context),
            self.handle_store,
            self.config,
            environ=self.environ,
            on_rejection=self.on_rejection,
            interactive=self.interactive,
        )

    # =========================================================================
    # RUN
    # =========================================================================

    def run(
        self,
        tool: str,
        args: Sequence[str] = (),
        capture: bool = False,
        check: bool = False
    ) -> ExecutionResult:
        """
        Run a wrapped tool with its credentials in scope.

        Nothing is spawned unless the session and the whole scope were
        built successfully. The scope is torn down before this returns or
        raises.

        Args:
            tool: Registered tool name
            args: Arguments passed through to the tool unchanged
            capture: Capture stdout/stderr instead of inheriting them
            check: Raise WrappedToolFailed on a non-zero exit

        Returns:
            ExecutionResult with the tool's own exit status

        Raises:
            UnknownTool, AuthError, SecretResolutionFailed, ScopeSetupFailed,
            WrappedToolFailed (with check), SupervisorInterrupted
        """
        context = self.context()
        profile = self.registry.resolve(tool)
        store = self.store_for(context)
        sessions = self.sessions_for(context)

        logger.info(f"Running {tool} in {context} via {store.backend_type}")
        session = sessions.acquire(context)

        with CleanupGuarantor() as cleanup:
            builder = ScopeBuilder(sessions, store, cleanup, artifact_dir(self.config))
            invocation = builder.build(profile, session, args)
            result = self._spawn(invocation, capture)

        if result.exit_code != 0:
            logger.info(f"{tool} exited with status {result.exit_code}")
            if check:
                raise WrappedToolFailed(tool, result.exit_code)
        return result

    def _spawn(self, invocation: Invocation, capture: bool) -> ExecutionResult:
        stream = subprocess.PIPE if capture else None
        proc = None
        try:
            proc = subprocess.Popen(
                invocation.argv,
                env=invocation.environment(self.environ),
                stdout=stream,
                stderr=stream,
                text=True
            )
            stdout, stderr = proc.communicate()
        except FileNotFoundError as e:
            raise ProgramNotFound(invocation.argv[0]) from e
        except OSError as e:
            raise ScopeSetupFailed(f"Could not start {invocation.argv[0]}: {e}") from e
        except SupervisorInterrupted as e:
            if proc is not None:
                self._terminate(proc, e.signum)
            raise
        finally:
            # The child never outlives the supervisor, whatever interrupted it
            if proc is not None and proc.poll() is None:
                self._kill(proc)

        return ExecutionResult(
            invocation.tool,
            exit_status(proc.returncode),
            invocation.redact(stdout),
            invocation.redact(stderr),
        )

    def _terminate(self, proc: subprocess.Popen, signum: int) -> None:
        """
        Forward the signal to the child, then kill it after the grace period.

        A further interruption during the grace period kills the child at once.
        """
        if proc.poll() is not None:
            return
        try:
            proc.send_signal(signum)
            proc.wait(timeout=self.child_grace_seconds)
        except subprocess.TimeoutExpired:
            logger.warning(f"Child {proc.pid} ignored signal {signum}, killing it")
        except SupervisorInterrupted as e:
            logger.warning(f"Interrupted again by signal {e.signum}, killing child {proc.pid}")
        except ProcessLookupError:
            pass
        finally:
            if proc.poll() is None:
                self._kill(proc)

    def _kill(self, proc: subprocess.Popen) -> None:
        try:
            proc.kill()
        except ProcessLookupError:
            pass
        proc.wait()

    # =========================================================================
    # SESSION COMMANDS
    # =========================================================================

    def login(self) -> SessionHandle:
        """Sign in (or reuse a valid cached session) on this machine."""
        return self.sessions_for(LOCAL).acquire(LOCAL)

    def logout(self) -> bool:
        """
        Sign out and forget the cached session.

        Returns:
            True if there was a cached session
        """
        handle = self.handle_store.load()
        if handle is None:
            return False
        self.sessions_for(LOCAL).invalidate(handle)
        return True

    def status(self) -> dict:
        context = self.context()
        return self.sessions_for(context).status(context)

    def describe_tools(self) -> List[dict]:
        """Registered profiles as plain dicts. References only, no values."""
        return [
            {
                "name": profile.name,
                "program": profile.program,
                "strategy": profile.strategy.value,
                "pointer_var": profile.pointer_var,
                "bindings": {b.destination: b.ref.uri for b in profile.bindings},
                "description": profile.description,
            }
            for profile in self.registry.profiles()
        ]

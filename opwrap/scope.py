"""
Credential Scope Builder

Turns a tool profile and a live session into a ready-to-spawn invocation
whose credentials exist only for that one child process.

Two strategies:
    export       - the store resolves env bindings when the child spawns
    bridge-file  - one value is embedded in a single-use askpass-style
                   script that the tool calls back into; the script is
                   registered for deletion before it is written
"""

import logging
import os
import shlex
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .cleanup import CleanupGuarantor, remove_artifact
from .errors import ScopeSetupFailed, StoreRejected
from .registry import MaterializationStrategy, ToolProfile
from .secrets.interface import SecretStore, SessionHandle

logger = logging.getLogger(__name__)

ARTIFACT_PREFIX = "opwrap-askpass-"

CONCEALED = "<concealed by opwrap>"


@dataclass
class Invocation:
    """
    A fully built, not yet spawned, wrapped-tool invocation.

    secret_values holds every resolved value or token the scope hands to
    the child, so captured output can be masked before it leaves opwrap.
    """
    tool: str
    argv: List[str]
    strategy: MaterializationStrategy
    env_additions: Dict[str, str] = field(default_factory=dict, repr=False)
    artifact: Optional[Path] = None
    secret_values: Tuple[str, ...] = field(default=(), repr=False)

    def environment(self, base: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        """The caller's environment plus exactly this scope's additions."""
        env = dict(os.environ if base is None else base)
        env.update(self.env_additions)
        return env

    def redact(self, text: Optional[str]) -> Optional[str]:
        """Replace every secret value in text, longest first."""
        if not text:
            return text
        for value in sorted(filter(None, self.secret_values), key=len, reverse=True):
            text = text.replace(value, CONCEALED)
        return text


class Strategy(ABC):
    """How resolved credentials become visible to the wrapped tool."""

    def __init__(self, secret_store: SecretStore):
        self.secret_store = secret_store

    @abstractmethod
    def materialize(
        self,
        profile: ToolProfile,
        session: SessionHandle,
        args: Sequence[str],
        cleanup: CleanupGuarantor
    ) -> Invocation:
        pass


class ExportStrategy(Strategy):
    """Hand all bindings to the store's run-with-exports operation."""

    def materialize(self, profile, session, args, cleanup) -> Invocation:
        bindings = [(b.destination, b.ref) for b in profile.bindings]
        argv, additions = self.secret_store.run_with_exports(
            bindings, [profile.program, *args], session
        )
        logger.info(
            f"Exporting {', '.join(b.destination for b in profile.bindings)} for {profile.name}"
        )
        # References resolved later by the store (op run) are not secrets;
        # anything else added to the environment is.
        references = {b.ref.uri for b in profile.bindings}
        return Invocation(
            tool=profile.name,
            argv=argv,
            strategy=MaterializationStrategy.EXPORT,
            env_additions=additions,
            secret_values=tuple(v for v in additions.values() if v not in references),
        )


def render_bridge_script(value: str) -> str:
    """Shell script that prints value and exits 0."""
    return f"#!/bin/sh\nprintf '%s\\n' {shlex.quote(value)}\nexit 0\n"


class BridgeFileStrategy(Strategy):
    """
    Resolve one value into a single-use executable the tool calls back.

    The artifact is owner-only (0700) and its deletion is registered with
    the cleanup guarantor as soon as the file exists.
    """

    def __init__(self, secret_store: SecretStore, artifact_dir: Optional[Path] = None):
        super().__init__(secret_store)
        self.artifact_dir = artifact_dir

    def materialize(self, profile, session, args, cleanup) -> Invocation:
        binding = profile.bindings[0]
        value = self.secret_store.read(binding.ref, session)

        try:
            fd, name = tempfile.mkstemp(
                prefix=ARTIFACT_PREFIX,
                dir=str(self.artifact_dir) if self.artifact_dir else None
            )
        except OSError as e:
            raise ScopeSetupFailed(f"Could not create credential helper for {profile.name}: {e}") from e

        path = Path(name)
        cleanup.register(partial(remove_artifact, path), label=str(path))

        try:
            with os.fdopen(fd, "w") as f:
                f.write(render_bridge_script(value))
            os.chmod(path, 0o700)
        except OSError as e:
            raise ScopeSetupFailed(f"Could not write credential helper for {profile.name}: {e}") from e

        logger.info(f"Created credential helper for {profile.name} via {profile.pointer_var}")
        return Invocation(
            tool=profile.name,
            argv=[profile.program, *args],
            strategy=MaterializationStrategy.BRIDGE_FILE,
            env_additions={profile.pointer_var: str(path)},
            artifact=path,
            secret_values=(value,),
        )


class ScopeBuilder:
    """
    Builds the ephemeral scope for one invocation.

    Every teardown obligation is registered with the invocation's cleanup
    guarantor before build() returns or raises.
    """

    def __init__(
        self,
        session_manager,
        secret_store: SecretStore,
        cleanup: CleanupGuarantor,
        artifact_dir: Optional[Path] = None
    ):
        self.session_manager = session_manager
        self.cleanup = cleanup
        self.strategies: Dict[MaterializationStrategy, Strategy] = {
            MaterializationStrategy.EXPORT: ExportStrategy(secret_store),
            MaterializationStrategy.BRIDGE_FILE: BridgeFileStrategy(secret_store, artifact_dir),
        }

    def build(self, profile: ToolProfile, session: SessionHandle, args: Sequence[str]) -> Invocation:
        """
        Materialize profile's credentials for one run of its program.

        Args:
            profile: The wrapped tool's profile
            session: Session acquired for this invocation
            args: Arguments for the wrapped tool, passed through unchanged

        Returns:
            The invocation to spawn

        Raises:
            StoreRejected: If the session is no longer valid
            SecretResolutionFailed: If a reference cannot be resolved
            ScopeSetupFailed: If the credential helper cannot be created
        """
        if not self.session_manager.validate(session):
            raise StoreRejected("session is no longer valid")

        strategy = self.strategies[profile.strategy]
        return strategy.materialize(profile, session, list(args), self.cleanup)

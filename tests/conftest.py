"""Shared fixtures: an in-memory secret store and helpers for real child processes."""

import os
import sys
from typing import Dict, Iterable, List, Optional

import pytest

from opwrap.errors import SecretResolutionFailed, StoreRejected
from opwrap.registry import BindingSpec, MaterializationStrategy, ToolProfile, ToolRegistry
from opwrap.secrets.interface import SecretRef, SecretStore, SessionHandle
from opwrap.session import MemoryHandleStore
from opwrap.supervisor import Supervisor

GITHUB_TOKEN = "ghp_test_token"
AWS_KEY_ID = "AKIATEST"
AWS_SECRET = "aws/secret+key"

GITHUB_REF = SecretRef("Key Vault", "GitHub PAT", "credential")
AWS_KEY_ID_REF = SecretRef("Key Vault", "AWS Access Key", "access_key_id")
AWS_SECRET_REF = SecretRef("Key Vault", "AWS Access Key", "secret_access_key")


class FakeSecretStore(SecretStore):
    """
    Secret store double.

    sign_in_results is consumed one entry per sign-in: a token string, or
    an exception to raise.
    """

    backend_type = "fake"

    def __init__(
        self,
        secrets: Optional[Dict[str, str]] = None,
        sign_in_results: Iterable = (),
        service_tokens: Iterable[str] = (),
        valid_tokens: Iterable[str] = ()
    ):
        super().__init__({})
        self.secrets = dict(secrets or {})
        self.sign_in_results = list(sign_in_results)
        self.service_tokens = set(service_tokens)
        self.valid_tokens = set(valid_tokens)
        self.calls: List[str] = []

    def sign_in(self, account=None):
        self.calls.append("sign_in")
        if not self.sign_in_results:
            raise StoreRejected("no sign-in configured")
        result = self.sign_in_results.pop(0)
        if isinstance(result, Exception):
            raise result
        self.valid_tokens.add(result)
        return result

    def authenticate_service_account(self, token):
        self.calls.append("authenticate_service_account")
        if token not in self.service_tokens:
            raise StoreRejected("invalid service account token")
        self.valid_tokens.add(token)

    def validate(self, handle):
        self.calls.append("validate")
        return handle.token in self.valid_tokens

    def sign_out(self, handle):
        self.calls.append("sign_out")
        self.valid_tokens.discard(handle.token)

    def _value(self, ref: SecretRef) -> str:
        if ref.uri not in self.secrets:
            raise SecretResolutionFailed(ref, "item not found")
        return self.secrets[ref.uri]

    def read(self, ref, handle):
        self.calls.append("read")
        return self._value(ref)

    def run_with_exports(self, bindings, argv, handle):
        self.calls.append("run_with_exports")
        return list(argv), {destination: self._value(ref) for destination, ref in bindings}


def all_secrets() -> Dict[str, str]:
    return {
        GITHUB_REF.uri: GITHUB_TOKEN,
        AWS_KEY_ID_REF.uri: AWS_KEY_ID,
        AWS_SECRET_REF.uri: AWS_SECRET,
    }


def python_tool(name: str, strategy=MaterializationStrategy.EXPORT) -> ToolProfile:
    """A profile whose program is this interpreter; the script goes in the args."""
    if strategy is MaterializationStrategy.BRIDGE_FILE:
        return ToolProfile(
            name=name,
            program=sys.executable,
            bindings=(BindingSpec(GITHUB_REF, "password"),),
            strategy=strategy,
            pointer_var="GIT_ASKPASS",
        )
    return ToolProfile(
        name=name,
        program=sys.executable,
        bindings=(
            BindingSpec(AWS_KEY_ID_REF, "AWS_ACCESS_KEY_ID"),
            BindingSpec(AWS_SECRET_REF, "AWS_SECRET_ACCESS_KEY"),
        ),
    )


def registry_of(*profiles: ToolProfile) -> ToolRegistry:
    registry = ToolRegistry()
    for profile in profiles:
        registry.register(profile)
    return registry


@pytest.fixture
def base_env(tmp_path):
    """Minimal caller environment; locale coercion off so child env stays exact."""
    return {
        "PATH": os.environ.get("PATH", ""),
        "PYTHONCOERCECLOCALE": "0",
        "OPWRAP_TEST_OUT": str(tmp_path / "child-out.txt"),
    }


@pytest.fixture
def artifact_dir(tmp_path):
    path = tmp_path / "artifacts"
    path.mkdir()
    return path


@pytest.fixture
def make_supervisor(artifact_dir):
    def _make(environ, store, registry, handle_store=None, **config):
        settings = {"child_grace_seconds": 2, "artifact_dir": str(artifact_dir)}
        settings.update(config)
        return Supervisor(
            config=settings,
            registry=registry,
            environ=environ,
            stores={"local": store, "ci": store},
            handle_store=handle_store if handle_store is not None else MemoryHandleStore(),
        )
    return _make


@pytest.fixture
def session_for():
    """A live interactive handle the given fake store accepts."""
    def _make(store: FakeSecretStore, token: str = "session-token") -> SessionHandle:
        from opwrap.secrets.interface import SessionSource

        store.valid_tokens.add(token)
        return SessionHandle(token=token, source=SessionSource.INTERACTIVE)
    return _make

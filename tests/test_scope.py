"""Tests for the credential scope builder."""

import stat
import subprocess
import sys

import pytest

from opwrap.cleanup import CleanupGuarantor
from opwrap.errors import ScopeSetupFailed, SecretResolutionFailed, StoreRejected
from opwrap.registry import MaterializationStrategy
from opwrap.scope import ARTIFACT_PREFIX, CONCEALED, ScopeBuilder, render_bridge_script
from opwrap.session import MemoryHandleStore, SessionManager

from .conftest import (
    AWS_KEY_ID,
    AWS_SECRET,
    GITHUB_TOKEN,
    FakeSecretStore,
    all_secrets,
    python_tool,
)

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="POSIX shell and permissions")


@pytest.fixture
def store():
    return FakeSecretStore(all_secrets())


@pytest.fixture
def builder(store, artifact_dir):
    sessions = SessionManager(store, MemoryHandleStore())
    return ScopeBuilder(sessions, store, CleanupGuarantor(), artifact_dir)


class TestExport:

    def test_bindings_become_env_additions(self, builder, store, session_for):
        profile = python_tool("aws")
        invocation = builder.build(profile, session_for(store), ["s3", "ls"])

        assert invocation.argv == [sys.executable, "s3", "ls"]
        assert invocation.env_additions == {
            "AWS_ACCESS_KEY_ID": AWS_KEY_ID,
            "AWS_SECRET_ACCESS_KEY": AWS_SECRET,
        }
        assert invocation.artifact is None
        assert len(builder.cleanup) == 0

    def test_environment_adds_exactly_the_bindings(self, builder, store, session_for):
        invocation = builder.build(python_tool("aws"), session_for(store), [])
        base = {"PATH": "/usr/bin", "HOME": "/home/dev"}

        env = invocation.environment(base)

        assert set(env) - set(base) == {"AWS_ACCESS_KEY_ID", "AWS_SECRET_ACCESS_KEY"}
        assert base == {"PATH": "/usr/bin", "HOME": "/home/dev"}

    def test_args_pass_through_unchanged(self, builder, store, session_for):
        args = ["--flag", "value with spaces", "$HOME", "--"]
        invocation = builder.build(python_tool("aws"), session_for(store), args)
        assert invocation.argv[1:] == args


class TestBridgeFile:

    @posix_only
    def test_artifact_prints_value_and_is_owner_only(self, builder, store, session_for, artifact_dir):
        profile = python_tool("git", MaterializationStrategy.BRIDGE_FILE)
        invocation = builder.build(profile, session_for(store), ["push"])

        artifact = invocation.artifact
        assert artifact.parent == artifact_dir
        assert artifact.name.startswith(ARTIFACT_PREFIX)
        assert stat.S_IMODE(artifact.stat().st_mode) == 0o700
        assert invocation.env_additions == {"GIT_ASKPASS": str(artifact)}

        out = subprocess.run([str(artifact), "Password for 'https://github.com':"], capture_output=True, text=True)
        assert out.returncode == 0
        assert out.stdout == GITHUB_TOKEN + "\n"

    def test_artifact_is_registered_for_cleanup(self, builder, store, session_for, artifact_dir):
        profile = python_tool("git", MaterializationStrategy.BRIDGE_FILE)
        invocation = builder.build(profile, session_for(store), [])

        assert len(builder.cleanup) == 1
        builder.cleanup.run_all()
        assert not invocation.artifact.exists()
        assert list(artifact_dir.iterdir()) == []

    @posix_only
    @pytest.mark.parametrize("value", ["it's", "$(touch pwned)", "a b\tc", "`id`", "100%s"])
    def test_script_quotes_value(self, tmp_path, value):
        script = tmp_path / "helper"
        script.write_text(render_bridge_script(value))
        script.chmod(0o700)

        out = subprocess.run([str(script)], capture_output=True, text=True, cwd=tmp_path)

        assert out.stdout == value + "\n"
        assert not (tmp_path / "pwned").exists()

    def test_resolution_failure_creates_nothing(self, builder, store, session_for, artifact_dir):
        store.secrets.clear()
        profile = python_tool("git", MaterializationStrategy.BRIDGE_FILE)

        with pytest.raises(SecretResolutionFailed):
            builder.build(profile, session_for(store), [])

        assert list(artifact_dir.iterdir()) == []
        assert len(builder.cleanup) == 0

    def test_unusable_artifact_dir(self, store, session_for, tmp_path):
        sessions = SessionManager(store, MemoryHandleStore())
        builder = ScopeBuilder(sessions, store, CleanupGuarantor(), tmp_path / "missing")
        profile = python_tool("git", MaterializationStrategy.BRIDGE_FILE)

        with pytest.raises(ScopeSetupFailed) as exc_info:
            builder.build(profile, session_for(store), [])
        assert exc_info.value.code == "SCOPE_SETUP_FAILED"


class TestSessionCheck:

    def test_invalid_session_builds_nothing(self, builder, store, session_for, artifact_dir):
        session = session_for(store)
        store.valid_tokens.clear()
        profile = python_tool("git", MaterializationStrategy.BRIDGE_FILE)

        with pytest.raises(StoreRejected):
            builder.build(profile, session, [])

        assert "read" not in store.calls
        assert list(artifact_dir.iterdir()) == []


class TestRedaction:

    def test_export_through_store_resolved_values(self, builder, store, session_for):
        invocation = builder.build(python_tool("aws"), session_for(store), [])

        text = f"id={AWS_KEY_ID} secret={AWS_SECRET}"

        assert invocation.redact(text) == f"id={CONCEALED} secret={CONCEALED}"
        assert AWS_SECRET not in repr(invocation)

    def test_references_and_session_token_from_op_run(self, builder, store, session_for):
        def run_with_exports(bindings, argv, handle):
            additions = {destination: ref.uri for destination, ref in bindings}
            additions["OP_SESSION_USER"] = "sess-tok"
            return ["op", "run", "--", *argv], additions

        store.run_with_exports = run_with_exports
        invocation = builder.build(python_tool("aws"), session_for(store), [])

        assert invocation.secret_values == ("sess-tok",)
        assert invocation.redact("op://Key Vault/AWS Access Key/access_key_id") == "op://Key Vault/AWS Access Key/access_key_id"

    def test_bridge_value(self, builder, store, session_for):
        invocation = builder.build(python_tool("git", MaterializationStrategy.BRIDGE_FILE), session_for(store), [])
        assert invocation.redact(f"token: {GITHUB_TOKEN}\n") == f"token: {CONCEALED}\n"

    def test_nothing_captured(self, builder, store, session_for):
        invocation = builder.build(python_tool("aws"), session_for(store), [])
        assert invocation.redact(None) is None
        assert invocation.redact("") == ""

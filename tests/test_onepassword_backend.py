"""Tests for the onepassword-sdk backend with the SDK client replaced."""

import asyncio

import pytest

from opwrap.errors import SecretResolutionFailed, StoreRejected
from opwrap.secrets import create_store
from opwrap.secrets.backends.onepassword import OnePasswordSdkStore
from opwrap.secrets.interface import SecretRef, SessionHandle, SessionSource

KEY_ID_REF = SecretRef("Key Vault", "AWS Access Key", "access_key_id")
SECRET_REF = SecretRef("Key Vault", "AWS Access Key", "secret_access_key")
SERVICE = SessionHandle(token="ops_abc", source=SessionSource.SERVICE_ACCOUNT)

VALUES = {KEY_ID_REF.uri: "AKIATEST", SECRET_REF.uri: "aws/secret"}


class FakeSecrets:

    def __init__(self, values, delay=0):
        self.values = values
        self.delay = delay

    async def resolve(self, uri):
        if self.delay:
            await asyncio.sleep(self.delay)
        if uri not in self.values:
            raise Exception(f"secret reference {uri} not found")
        return self.values[uri]


def fake_client(accepted_token="ops_abc", values=VALUES, delay=0):
    class FakeClient:
        authentications = []

        def __init__(self):
            self.secrets = FakeSecrets(values, delay)

        @classmethod
        async def authenticate(cls, auth, integration_name, integration_version):
            cls.authentications.append((auth, integration_name, integration_version))
            if auth != accepted_token:
                raise Exception("invalid service account token")
            return cls()

    return FakeClient


@pytest.fixture
def client(monkeypatch):
    def _install(**kwargs):
        fake = fake_client(**kwargs)
        monkeypatch.setattr("opwrap.secrets.backends.onepassword.Client", fake)
        return fake
    return _install


@pytest.fixture
def store():
    return OnePasswordSdkStore({"store_timeout": 5})


class TestAuthentication:

    def test_service_account_accepted(self, client, store):
        fake = client()
        store.authenticate_service_account("ops_abc")
        auth, name, version = fake.authentications[0]
        assert auth == "ops_abc"
        assert name == "opwrap"
        assert version.startswith("v")

    def test_service_account_rejected(self, client, store):
        client()
        with pytest.raises(StoreRejected, match="invalid service account token"):
            store.authenticate_service_account("revoked")

    def test_interactive_sign_in_is_unsupported(self, client, store):
        fake = client()
        assert store.supports_interactive is False
        with pytest.raises(StoreRejected):
            store.sign_in()
        assert fake.authentications == []

    def test_validate(self, client, store):
        client()
        assert store.validate(SERVICE) is True
        assert store.validate(SessionHandle(token="bad", source=SessionSource.SERVICE_ACCOUNT)) is False
        assert store.validate(SessionHandle(token="ops_abc", source=SessionSource.INTERACTIVE)) is False


class TestResolution:

    def test_read(self, client, store):
        client()
        assert store.read(KEY_ID_REF, SERVICE) == "AKIATEST"

    def test_run_with_exports_resolves_in_order(self, client, store):
        client()
        argv, additions = store.run_with_exports(
            [("AWS_ACCESS_KEY_ID", KEY_ID_REF), ("AWS_SECRET_ACCESS_KEY", SECRET_REF)],
            ["aws", "s3", "ls"],
            SERVICE,
        )
        assert argv == ["aws", "s3", "ls"]
        assert additions == {"AWS_ACCESS_KEY_ID": "AKIATEST", "AWS_SECRET_ACCESS_KEY": "aws/secret"}

    def test_missing_reference_names_it(self, client, store):
        client(values={KEY_ID_REF.uri: "AKIATEST"})
        with pytest.raises(SecretResolutionFailed) as exc_info:
            store.run_with_exports(
                [("AWS_ACCESS_KEY_ID", KEY_ID_REF), ("AWS_SECRET_ACCESS_KEY", SECRET_REF)],
                ["aws"],
                SERVICE,
            )
        assert exc_info.value.ref == SECRET_REF

    def test_timeout(self, client):
        client(delay=1)
        store = OnePasswordSdkStore({"store_timeout": 0.05})
        with pytest.raises(SecretResolutionFailed, match="timed out"):
            store.read(KEY_ID_REF, SERVICE)

    def test_rejected_token_during_resolution(self, client, store):
        client()
        with pytest.raises(StoreRejected):
            store.read(KEY_ID_REF, SessionHandle(token="bad", source=SessionSource.SERVICE_ACCOUNT))


def test_registered_under_both_names():
    assert isinstance(create_store({"adapter": "onepassword"}), OnePasswordSdkStore)
    assert isinstance(create_store({"adapter": "1password"}), OnePasswordSdkStore)

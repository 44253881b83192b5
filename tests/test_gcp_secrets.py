from types import SimpleNamespace

import pytest
from google.api_core.exceptions import AlreadyExists, NotFound, PermissionDenied

from n8n_deploy_kit.errors import ProtectedResourceViolation, RemoteOperationFailure, SecretAlreadyExists
from n8n_deploy_kit.gcp_secrets import SecretManagerStore
from n8n_deploy_kit.safety import ProtectedResources


class _Bindings(list):
    def add(self):  # noqa: ANN201
        b = SimpleNamespace(role="", members=[])
        self.append(b)
        return b


class FakeSecretManagerClient:
    def __init__(self, existing=()) -> None:  # noqa: ANN001
        self.secrets = {f"projects/p/secrets/{n}" for n in existing}
        self.versions: list = []
        self.policies: dict = {}
        self.set_calls = 0

    def get_secret(self, name: str):  # noqa: ANN201
        if name not in self.secrets:
            raise NotFound(name)
        return SimpleNamespace(name=name)

    def create_secret(self, parent: str, secret_id: str, secret: dict):  # noqa: ANN201
        name = f"{parent}/secrets/{secret_id}"
        if name in self.secrets:
            raise AlreadyExists(name)
        assert secret["replication"] == {"automatic": {}}
        self.secrets.add(name)

    def add_secret_version(self, parent: str, payload: dict) -> None:
        self.versions.append((parent, payload["data"]))

    def get_iam_policy(self, request: dict):  # noqa: ANN201
        return self.policies.setdefault(request["resource"], SimpleNamespace(bindings=_Bindings()))

    def set_iam_policy(self, request: dict) -> None:
        self.set_calls += 1
        self.policies[request["resource"]] = request["policy"]

    def list_secrets(self, request: dict):  # noqa: ANN201
        return [SimpleNamespace(name=n) for n in sorted(self.secrets)]


def _store(client: FakeSecretManagerClient) -> SecretManagerStore:
    return SecretManagerStore("p", ProtectedResources(secret_prefix="n8n-"), client=client)


def test_create_adds_initial_version() -> None:
    client = FakeSecretManagerClient()
    store = _store(client)

    store.create("n8n-DB_TYPE", "postgresdb")

    assert store.exists("n8n-DB_TYPE")
    assert client.versions == [("projects/p/secrets/n8n-DB_TYPE", b"postgresdb")]


def test_create_existing_raises_secret_already_exists() -> None:
    client = FakeSecretManagerClient(existing=["n8n-DB_TYPE"])

    with pytest.raises(SecretAlreadyExists):
        _store(client).create("n8n-DB_TYPE", "postgresdb")

    assert client.versions == []


def test_grant_access_is_additive_and_idempotent() -> None:
    client = FakeSecretManagerClient(existing=["n8n-A"])
    policy = client.get_iam_policy({"resource": "projects/p/secrets/n8n-A"})
    other = policy.bindings.add()
    other.role = "roles/secretmanager.secretAccessor"
    other.members.append("user:admin@example.com")
    store = _store(client)

    assert store.grant_access("n8n-A", "sa@p.iam.gserviceaccount.com", "roles/secretmanager.secretAccessor")
    assert not store.grant_access("n8n-A", "sa@p.iam.gserviceaccount.com", "roles/secretmanager.secretAccessor")

    members = client.policies["projects/p/secrets/n8n-A"].bindings[0].members
    assert members == ["user:admin@example.com", "serviceAccount:sa@p.iam.gserviceaccount.com"]
    assert client.set_calls == 1


def test_mutations_on_non_prefixed_secret_are_refused() -> None:
    client = FakeSecretManagerClient(existing=["docmost-db-password"])
    store = _store(client)

    with pytest.raises(ProtectedResourceViolation):
        store.add_version("docmost-db-password", "x")
    with pytest.raises(ProtectedResourceViolation):
        store.grant_access("docmost-db-password", "sa@p.iam.gserviceaccount.com", "roles/x")

    assert client.versions == []
    assert client.set_calls == 0


def test_list_returns_short_names_filtered_by_prefix() -> None:
    client = FakeSecretManagerClient(existing=["docmost-db-password", "n8n-A", "n8n-B"])
    store = _store(client)

    assert store.list("n8n-") == ["n8n-A", "n8n-B"]
    assert store.list() == ["docmost-db-password", "n8n-A", "n8n-B"]


class DeniedClient(FakeSecretManagerClient):
    def get_secret(self, name: str):  # noqa: ANN201
        raise PermissionDenied(name)

    def add_secret_version(self, parent: str, payload: dict) -> None:
        raise PermissionDenied(parent)


def test_api_errors_become_remote_operation_failure() -> None:
    store = _store(DeniedClient())

    with pytest.raises(RemoteOperationFailure) as excinfo:
        store.exists("n8n-DB_TYPE")
    assert "n8n-DB_TYPE" in str(excinfo.value)

    with pytest.raises(RemoteOperationFailure):
        store.add_version("n8n-DB_TYPE", "postgresdb")

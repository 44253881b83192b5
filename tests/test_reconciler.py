from conftest import FakeSecretStore
from n8n_deploy_kit.reconciler import SECRET_ACCESSOR_ROLE, Action, reconcile
from n8n_deploy_kit.registry import Registry, Static
from n8n_deploy_kit.resolver import Origin, ResolvedValue
from n8n_deploy_kit.safety import ProtectedResources


SA = "n8n-sa@test-project.iam.gserviceaccount.com"


def _values(**kwargs: str) -> dict:
    return {k: ResolvedValue(k, v, Origin.DEFAULT) for k, v in kwargs.items()}


def test_creates_missing_and_updates_existing() -> None:
    store = FakeSecretStore(existing={"n8n-DB_TYPE": ["old"]})

    report = reconcile(
        _values(DB_TYPE="postgresdb", NODE_ENV="production"),
        store,
        principal=SA,
        prefix="n8n-",
    )

    assert not report.has_failures
    assert store.versions["n8n-DB_TYPE"] == ["old", "postgresdb"]
    assert store.versions["n8n-NODE_ENV"] == ["production"]
    assert report.count(Action.UPDATED) == 1
    assert report.count(Action.CREATED) == 1
    assert SA in store.members["n8n-NODE_ENV"]


def test_rerun_adds_versions_and_keeps_grant_idempotent() -> None:
    store = FakeSecretStore()
    values = _values(DB_TYPE="postgresdb")

    reconcile(values, store, principal=SA, prefix="n8n-")
    second = reconcile(values, store, principal=SA, prefix="n8n-")

    assert store.versions["n8n-DB_TYPE"] == ["postgresdb", "postgresdb"]
    assert second.items[0].action is Action.UPDATED
    assert second.items[0].granted is False
    assert store.members["n8n-DB_TYPE"] == {SA}


def test_failure_is_recorded_and_processing_continues() -> None:
    store = FakeSecretStore()
    store.fail_on.add("n8n-B")

    report = reconcile(_values(A="1", B="2", C="3"), store, principal=SA, prefix="n8n-")

    assert report.has_failures
    assert [f.secret_name for f in report.failures] == ["n8n-B"]
    assert report.touched == ["n8n-A", "n8n-C"]
    assert "n8n-C" in store.versions
    assert "FAILED" in report.render()


def test_concurrent_create_falls_back_to_new_version() -> None:
    store = FakeSecretStore()
    store.race_on.add("n8n-A")

    report = reconcile(_values(A="mine"), store, principal=SA, prefix="n8n-")

    assert not report.has_failures
    assert report.items[0].action is Action.UPDATED
    assert store.latest("n8n-A") == "mine"


def test_unpublished_and_empty_values_are_skipped() -> None:
    reg = Registry()
    reg.define("DB_NAME", Static("n8n"), publish=False)
    reg.define("DB_TYPE", Static("postgresdb"))
    reg.define("EMPTY", Static(""), required=False)
    reg.freeze()
    store = FakeSecretStore()

    report = reconcile(
        _values(DB_NAME="n8n", DB_TYPE="postgresdb", EMPTY=""),
        store,
        principal=SA,
        prefix="n8n-",
        registry=reg,
    )

    assert report.touched == ["n8n-DB_TYPE"]
    assert list(store.versions) == ["n8n-DB_TYPE"]


def test_never_touches_secret_outside_prefix() -> None:
    protected = ProtectedResources(secret_prefix="n8n-")
    store = FakeSecretStore(existing={"docmost-db-password": ["keep"]}, protected=protected)

    # "n8n-" 로 시작하지 않는 이름은 보호 대상이다.
    report = reconcile(_values(A="1"), store, principal=SA, prefix="")

    assert report.has_failures
    assert store.versions == {"docmost-db-password": ["keep"]}
    assert store.calls == []


def test_default_role_is_secret_accessor() -> None:
    assert SECRET_ACCESSOR_ROLE == "roles/secretmanager.secretAccessor"


def test_two_runs_issue_one_create_then_one_add_version() -> None:
    store = FakeSecretStore()
    values = _values(DB_TYPE="postgresdb", NODE_ENV="production")

    reconcile(values, store, principal=SA, prefix="n8n-")
    reconcile(values, store, principal=SA, prefix="n8n-")

    for name in ("n8n-DB_TYPE", "n8n-NODE_ENV"):
        assert store.calls.count(("create", name)) == 1
        assert store.calls.count(("add_version", name)) == 1

import pytest

from n8n_deploy_kit.errors import (
    DuplicateVariable,
    ProtectedResourceViolation,
    RegistryFrozen,
    UnknownVariable,
)
from n8n_deploy_kit.registry import (
    Derived,
    Generated,
    Interactive,
    Registry,
    ResolutionKind,
    Static,
    build_default_registry,
)


def test_define_preserves_order_and_kind() -> None:
    reg = Registry()
    reg.define("A", Static("1"))
    reg.define("B", Interactive("b"))
    reg.define("C", Derived(("A",), lambda v: v["A"] + "!"))

    assert reg.names() == ["A", "B", "C"]
    assert reg.variable("B").kind is ResolutionKind.INTERACTIVE
    assert reg.rule("A") == Static("1")
    assert "C" in reg
    assert len(reg) == 3


def test_duplicate_definition_is_rejected() -> None:
    reg = Registry()
    reg.define("A", Static("1"))

    with pytest.raises(DuplicateVariable):
        reg.define("A", Static("2"))


def test_derived_must_reference_defined_variables() -> None:
    reg = Registry()

    with pytest.raises(UnknownVariable) as excinfo:
        reg.define("HOST", Derived(("CONN",), lambda v: v["CONN"]))

    assert excinfo.value.name == "CONN"


def test_frozen_registry_rejects_define() -> None:
    reg = Registry().freeze()

    with pytest.raises(RegistryFrozen):
        reg.define("A", Static("1"))


def test_unknown_lookup_raises() -> None:
    with pytest.raises(UnknownVariable):
        Registry().variable("NOPE")


def test_default_registry_contents(cfg) -> None:  # noqa: ANN001
    reg = build_default_registry(cfg)

    assert reg.frozen
    published = reg.published_names()
    # 설정 전용 변수는 Secret 으로 올라가지 않는다.
    assert "DB_NAME" not in published
    assert "GCP_REGION" not in published
    for name in (
        "DB_POSTGRESDB_HOST",
        "DB_POSTGRESDB_PASSWORD",
        "QUEUE_BULL_REDIS_HOST",
        "N8N_EXTERNAL_STORAGE_S3_BUCKET_NAME",
        "N8N_ENCRYPTION_KEY",
    ):
        assert name in published

    assert isinstance(reg.rule("N8N_ENCRYPTION_KEY"), Generated)
    password = reg.variable("DB_POSTGRESDB_PASSWORD")
    assert password.required
    assert password.rule.confirm
    assert "DB_PASSWORD" in password.override_keys
    assert not reg.variable("QUEUE_BULL_REDIS_PASSWORD").required


def test_validate_overrides_rejects_protected_names(cfg) -> None:  # noqa: ANN001
    reg = build_default_registry(cfg)
    protected = {"database": {"docmost"}, "user": {"postgres", "docmost"}}

    reg.validate_overrides({"DB_NAME": "n8n"}, protected)

    with pytest.raises(ProtectedResourceViolation) as excinfo:
        reg.validate_overrides({"DB_USER": "postgres"}, protected)

    assert excinfo.value.kind == "user"
    assert excinfo.value.name == "postgres"

import os

import pytest

from n8n_deploy_kit.config import ProjectConfig, load_env_files
from n8n_deploy_kit.errors import ProtectedResourceViolation


def _base_env() -> dict[str, str]:
    return {
        "GCP_PROJECT": "test-project",
        "GCP_REGION": "asia-northeast3",
        "SERVICE_ACCOUNT": "n8n-sa@test-project.iam.gserviceaccount.com",
        "CLOUD_SQL_INSTANCE": "test-project:asia-northeast3:shared-pg",
        "REDIS_INSTANCE": "shared-redis",
        "REDIS_HOST": "10.0.0.3",
        "STORAGE_BUCKET": "test-project-n8n",
    }


def test_missing_required_env_raises_value_error() -> None:
    env = _base_env()

    # 필수 값 중 GCP_PROJECT 와 REDIS_HOST 를 비워둔다.
    del env["GCP_PROJECT"]
    env["REDIS_HOST"] = ""

    with pytest.raises(ValueError) as excinfo:
        ProjectConfig.from_env(env)

    assert "GCP_PROJECT" in str(excinfo.value)
    assert "REDIS_HOST" in str(excinfo.value)


def test_defaults_and_derived_names() -> None:
    cfg = ProjectConfig.from_env(_base_env())

    assert cfg.db_name == "n8n"
    assert cfg.db_user == "n8n_user"
    assert cfg.secret_prefix == "n8n-"
    assert cfg.redis_db_index == 1
    assert cfg.sql_instance_name == "shared-pg"
    assert cfg.sql_connection_name == "test-project:asia-northeast3:shared-pg"
    assert cfg.image_ref == "gcr.io/test-project/n8n:latest"
    assert cfg.protected_users == frozenset({"postgres", "docmost"})
    assert not cfg.skip_confirm


def test_protected_database_name_is_rejected() -> None:
    env = _base_env()
    env["DB_NAME"] = "docmost"

    with pytest.raises(ProtectedResourceViolation) as excinfo:
        ProjectConfig.from_env(env)

    assert excinfo.value.kind == "database"


def test_protected_service_name_is_rejected() -> None:
    env = _base_env()
    env["CLOUD_RUN_SERVICE"] = "docmost"

    with pytest.raises(ProtectedResourceViolation):
        ProjectConfig.from_env(env)


def test_empty_secret_prefix_is_rejected() -> None:
    env = _base_env()
    env["SECRET_PREFIX"] = ""

    with pytest.raises(ValueError) as excinfo:
        ProjectConfig.from_env(env)

    assert "SECRET_PREFIX" in str(excinfo.value)


def test_invalid_int_value_names_the_key() -> None:
    env = _base_env()
    env["REDIS_PORT"] = "six"

    with pytest.raises(ValueError) as excinfo:
        ProjectConfig.from_env(env)

    assert "REDIS_PORT" in str(excinfo.value)


def test_skip_confirm_and_protected_lists_from_env() -> None:
    env = _base_env()
    env.update(
        {
            "SKIP_CONFIRM": "true",
            "PROTECTED_DATABASES": "docmost, wiki",
            "IMAGE_TAG": "v1",
            "GCR_REPOSITORY": "asia.gcr.io/test-project/n8n-custom",
        }
    )

    cfg = ProjectConfig.from_env(env)

    assert cfg.skip_confirm
    assert cfg.protected_databases == frozenset({"docmost", "wiki"})
    assert cfg.image_ref == "asia.gcr.io/test-project/n8n-custom:v1"


def test_load_env_files_later_file_wins(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:  # noqa: ANN001
    (tmp_path / ".env").write_text("GCP_REGION=us-central1\nDB_NAME=first\n", encoding="utf-8")
    (tmp_path / ".env.gcp").write_text("GCP_REGION=asia-northeast3\n", encoding="utf-8")
    monkeypatch.delenv("GCP_REGION", raising=False)
    monkeypatch.delenv("DB_NAME", raising=False)

    load_env_files(str(tmp_path))

    assert os.environ["GCP_REGION"] == "asia-northeast3"
    assert os.environ["DB_NAME"] == "first"
    monkeypatch.delenv("GCP_REGION", raising=False)
    monkeypatch.delenv("DB_NAME", raising=False)


def test_readiness_poll_settings_from_env() -> None:
    env = _base_env()
    env.update({"READINESS_POLL_ATTEMPTS": "3", "READINESS_POLL_INTERVAL": "0.5"})

    cfg = ProjectConfig.from_env(env)

    assert cfg.readiness_poll_attempts == 3
    assert cfg.readiness_poll_interval == 0.5


def test_invalid_poll_interval_names_the_key() -> None:
    env = _base_env()
    env["READINESS_POLL_INTERVAL"] = "soon"

    with pytest.raises(ValueError) as excinfo:
        ProjectConfig.from_env(env)

    assert "READINESS_POLL_INTERVAL" in str(excinfo.value)

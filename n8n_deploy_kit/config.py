from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import FrozenSet, List, Mapping, Optional

from dotenv import load_dotenv

from .errors import ProtectedResourceViolation


ENV_FILES_DEFAULT_ORDER = [".env", ".env.gcp", ".env.secrets"]

DEFAULT_PROTECTED_DATABASES = "docmost"
DEFAULT_PROTECTED_USERS = "postgres,docmost"
DEFAULT_PROTECTED_SERVICES = "docmost"


def load_env_files(base_dir: str = ".",
                   files: Optional[List[str]] = None) -> None:
    """
    주어진 디렉토리에서 .env 계열 파일을 순서대로 로드한다.
    후순위 파일이 같은 키를 덮어쓴다.
    """
    order = files or ENV_FILES_DEFAULT_ORDER
    for name in order:
        path = os.path.join(base_dir, name)
        if os.path.exists(path):
            load_dotenv(path, override=True)


def _get_bool(env: Mapping[str, str], name: str, default: bool = False) -> bool:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    return raw.lower() in {"1", "true", "yes", "y"}


def _get_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"{name} 값은 정수여야 합니다: {raw!r}") from e


def _get_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ValueError(f"{name} 값은 숫자여야 합니다: {raw!r}") from e


def _split_names(raw: str) -> FrozenSet[str]:
    return frozenset(p.strip() for p in raw.split(",") if p.strip())


@dataclass(frozen=True)
class ProjectConfig:
    """
    한 번의 프로비저닝 실행 동안 모든 컴포넌트에 명시적으로 전달되는
    불변 설정 컨텍스트. 생성 시점에 보호 리소스 충돌을 검증한다.
    """

    # 필수 공통
    gcp_project: str
    gcp_region: str
    service_account: str
    cloud_sql_instance: str
    redis_instance: str
    redis_host: str
    storage_bucket: str

    cloud_sql_connection_name: Optional[str] = None
    redis_port: int = 6379
    redis_db_index: int = 1

    # 데이터베이스
    db_name: str = "n8n"
    db_user: str = "n8n_user"

    # Cloud Run
    cloud_run_service: str = "n8n"
    cloud_run_port: int = 5678
    cloudrun_yaml: str = "cloudrun.yaml"

    # 이미지
    gcr_repository: Optional[str] = None
    image_tag: str = "latest"
    repo_root: str = "."
    dockerfile: str = "docker/images/n8n/Dockerfile"

    # Secret Manager
    secret_prefix: str = "n8n-"

    # 보호 대상 (기존 docmost 인프라)
    protected_databases: FrozenSet[str] = field(
        default_factory=lambda: _split_names(DEFAULT_PROTECTED_DATABASES)
    )
    protected_users: FrozenSet[str] = field(
        default_factory=lambda: _split_names(DEFAULT_PROTECTED_USERS)
    )
    protected_services: FrozenSet[str] = field(
        default_factory=lambda: _split_names(DEFAULT_PROTECTED_SERVICES)
    )

    # 동작 토글
    skip_confirm: bool = False
    readiness_poll_attempts: int = 12
    readiness_poll_interval: float = 5.0

    def __post_init__(self) -> None:
        if not self.secret_prefix:
            raise ValueError("SECRET_PREFIX 가 비어 있습니다. 다른 Secret 과의 충돌을 막기 위해 필수입니다.")
        if self.db_name in self.protected_databases:
            raise ProtectedResourceViolation("database", self.db_name)
        if self.db_user in self.protected_users:
            raise ProtectedResourceViolation("user", self.db_user)
        if self.cloud_run_service in self.protected_services:
            raise ProtectedResourceViolation("service", self.cloud_run_service)

    @property
    def sql_instance_name(self) -> str:
        # "project:region:instance" 형식이면 마지막 구간만 사용
        return self.cloud_sql_instance.rsplit(":", 1)[-1]

    @property
    def sql_connection_name(self) -> str:
        return self.cloud_sql_connection_name or self.cloud_sql_instance

    @property
    def image_repository(self) -> str:
        return self.gcr_repository or f"gcr.io/{self.gcp_project}/n8n"

    @property
    def image_ref(self) -> str:
        return f"{self.image_repository}:{self.image_tag}"

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "ProjectConfig":
        env = os.environ if env is None else env

        # 필수값
        missing: List[str] = []
        def req(name: str) -> str:
            val = env.get(name)
            if not val:
                missing.append(name)
            return val or ""

        kwargs = dict(
            gcp_project=req("GCP_PROJECT"),
            gcp_region=req("GCP_REGION"),
            service_account=req("SERVICE_ACCOUNT"),
            cloud_sql_instance=req("CLOUD_SQL_INSTANCE"),
            redis_instance=req("REDIS_INSTANCE"),
            redis_host=req("REDIS_HOST"),
            storage_bucket=req("STORAGE_BUCKET"),
        )

        if missing:
            raise ValueError(
                "필수 환경변수가 누락되었습니다: " + ", ".join(sorted(set(missing)))
            )

        return cls(
            **kwargs,
            cloud_sql_connection_name=env.get("CLOUD_SQL_CONNECTION_NAME") or None,
            redis_port=_get_int(env, "REDIS_PORT", 6379),
            redis_db_index=_get_int(env, "REDIS_DB_INDEX", 1),
            db_name=env.get("DB_NAME") or "n8n",
            db_user=env.get("DB_USER") or "n8n_user",
            cloud_run_service=env.get("CLOUD_RUN_SERVICE") or "n8n",
            cloud_run_port=_get_int(env, "CLOUD_RUN_PORT", 5678),
            cloudrun_yaml=env.get("CLOUDRUN_YAML") or "cloudrun.yaml",
            gcr_repository=env.get("GCR_REPOSITORY") or None,
            image_tag=env.get("IMAGE_TAG") or "latest",
            repo_root=env.get("REPO_ROOT") or ".",
            dockerfile=env.get("DOCKERFILE") or "docker/images/n8n/Dockerfile",
            secret_prefix=env.get("SECRET_PREFIX", "n8n-"),
            protected_databases=_split_names(
                env.get("PROTECTED_DATABASES", DEFAULT_PROTECTED_DATABASES)
            ),
            protected_users=_split_names(
                env.get("PROTECTED_USERS", DEFAULT_PROTECTED_USERS)
            ),
            protected_services=_split_names(
                env.get("PROTECTED_SERVICES", DEFAULT_PROTECTED_SERVICES)
            ),
            skip_confirm=_get_bool(env, "SKIP_CONFIRM", False),
            readiness_poll_attempts=_get_int(env, "READINESS_POLL_ATTEMPTS", 12),
            readiness_poll_interval=_get_float(env, "READINESS_POLL_INTERVAL", 5.0),
        )

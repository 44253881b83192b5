"""
registry
--------

Secret Manager 에 올라갈 n8n 환경변수 목록과, 각 변수의 값을 어떻게 구하는지
(고정값 / 다른 값에서 파생 / 환경변수 / 입력 / 자동 생성) 를 정의하는 모듈.

레지스트리는 실행 시작 시 한 번 만들어지고 freeze 이후에는 변경되지 않는다.
파생 규칙은 이미 정의된 이름만 참조할 수 있으므로 정의 순서 자체가
순환이 없는 의존 순서가 된다.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from .config import ProjectConfig
from .errors import (
    DuplicateVariable,
    ProtectedResourceViolation,
    RegistryFrozen,
    UnknownVariable,
)


class ResolutionKind(str, Enum):
    STATIC = "static"
    DERIVED = "derived"
    ENVIRONMENT = "environment"
    INTERACTIVE = "interactive"
    GENERATED = "generated"


@dataclass(frozen=True)
class Static:
    value: str

    kind = ResolutionKind.STATIC


@dataclass(frozen=True)
class Derived:
    depends_on: Tuple[str, ...]
    func: Callable[[Mapping[str, str]], str]

    kind = ResolutionKind.DERIVED


@dataclass(frozen=True)
class Environment:
    """다른 이름의 환경변수에서 값을 읽는다. 없으면 default."""

    source: str
    default: str = ""

    kind = ResolutionKind.ENVIRONMENT


@dataclass(frozen=True)
class Interactive:
    label: str
    secret: bool = True
    confirm: bool = False

    kind = ResolutionKind.INTERACTIVE


@dataclass(frozen=True)
class Generated:
    label: str
    generator: Optional[Callable[[], str]] = None

    kind = ResolutionKind.GENERATED


ResolutionRule = Union[Static, Derived, Environment, Interactive, Generated]


@dataclass(frozen=True)
class ConfigVariable:
    name: str
    rule: ResolutionRule
    # False 면 파생 규칙의 입력으로만 쓰이고 Secret 으로는 올라가지 않는다.
    publish: bool = True
    required: bool = True
    aliases: Tuple[str, ...] = ()
    # 값이 원격 리소스 이름인 경우 (database | user | service)
    resource_kind: Optional[str] = None

    @property
    def kind(self) -> ResolutionKind:
        return self.rule.kind

    @property
    def override_keys(self) -> Tuple[str, ...]:
        return (self.name, *self.aliases)


@dataclass
class Registry:
    _variables: Dict[str, ConfigVariable] = field(default_factory=dict)
    _frozen: bool = False

    def define(
        self,
        name: str,
        rule: ResolutionRule,
        *,
        publish: bool = True,
        required: bool = True,
        aliases: Iterable[str] = (),
        resource_kind: Optional[str] = None,
    ) -> None:
        if self._frozen:
            raise RegistryFrozen(f"freeze 된 레지스트리에는 변수를 추가할 수 없습니다: {name}")
        if name in self._variables:
            raise DuplicateVariable(name)
        if isinstance(rule, Derived):
            for dep in rule.depends_on:
                if dep not in self._variables:
                    raise UnknownVariable(dep)

        self._variables[name] = ConfigVariable(
            name=name,
            rule=rule,
            publish=publish,
            required=required,
            aliases=tuple(aliases),
            resource_kind=resource_kind,
        )

    def freeze(self) -> "Registry":
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def names(self) -> List[str]:
        return list(self._variables)

    def published_names(self) -> List[str]:
        return [n for n, v in self._variables.items() if v.publish]

    def variable(self, name: str) -> ConfigVariable:
        try:
            return self._variables[name]
        except KeyError:
            raise UnknownVariable(name) from None

    def rule(self, name: str) -> ResolutionRule:
        return self.variable(name).rule

    def __iter__(self):
        return iter(self._variables.values())

    def __len__(self) -> int:
        return len(self._variables)

    def __contains__(self, name: object) -> bool:
        return name in self._variables

    def validate_overrides(
        self,
        overrides: Mapping[str, str],
        protected: Mapping[str, Iterable[str]],
    ) -> None:
        """
        리소스 이름을 담는 변수에 보호 대상 이름이 override 되었는지 검사한다.
        값 해석 전에 호출되어야 한다.

        protected: {"database": {...}, "user": {...}, "service": {...}}
        """
        for var in self._variables.values():
            if var.resource_kind is None:
                continue
            names = set(protected.get(var.resource_kind, ()))
            for key in var.override_keys:
                value = overrides.get(key)
                if value and value in names:
                    raise ProtectedResourceViolation(var.resource_kind, value)
            if isinstance(var.rule, Static) and var.rule.value in names:
                raise ProtectedResourceViolation(var.resource_kind, var.rule.value)


def _ref(name: str) -> Callable[[Mapping[str, str]], str]:
    return lambda values: values[name]


def build_default_registry(cfg: ProjectConfig) -> Registry:
    """
    n8n 배포에 필요한 변수 목록. 정의 순서가 곧 처리/보고 순서다.
    """
    reg = Registry()

    # 프로젝트 설정 (Secret 으로 올리지 않음)
    reg.define("GCP_REGION", Static(cfg.gcp_region), publish=False)
    reg.define(
        "CLOUD_SQL_CONNECTION_NAME", Static(cfg.sql_connection_name), publish=False
    )
    reg.define("DB_NAME", Static(cfg.db_name), publish=False, resource_kind="database")
    reg.define("DB_USER", Static(cfg.db_user), publish=False, resource_kind="user")
    reg.define("REDIS_HOST", Static(cfg.redis_host), publish=False)
    reg.define("REDIS_PORT", Static(str(cfg.redis_port)), publish=False)
    reg.define("REDIS_DB_INDEX", Static(str(cfg.redis_db_index)), publish=False)
    reg.define("STORAGE_BUCKET", Static(cfg.storage_bucket), publish=False)

    # App
    reg.define("N8N_PROTOCOL", Static("https"))
    reg.define("N8N_PORT", Static(str(cfg.cloud_run_port)))
    reg.define("NODE_ENV", Static("production"))
    reg.define("N8N_METRICS", Static("true"))
    reg.define("N8N_DIAGNOSTICS_ENABLED", Static("false"))
    reg.define("WEBHOOK_URL", Environment("N8N_WEBHOOK_URL"), required=False)

    # Database
    reg.define("DB_TYPE", Static("postgresdb"))
    reg.define(
        "DB_POSTGRESDB_HOST",
        Derived(
            ("CLOUD_SQL_CONNECTION_NAME",),
            lambda v: f"/cloudsql/{v['CLOUD_SQL_CONNECTION_NAME']}",
        ),
    )
    reg.define(
        "DB_POSTGRESDB_DATABASE",
        Derived(("DB_NAME",), _ref("DB_NAME")),
        resource_kind="database",
    )
    reg.define(
        "DB_POSTGRESDB_USER",
        Derived(("DB_USER",), _ref("DB_USER")),
        resource_kind="user",
    )
    reg.define(
        "DB_POSTGRESDB_PASSWORD",
        Interactive(f"데이터베이스 사용자 '{cfg.db_user}' 비밀번호", confirm=True),
        aliases=("DB_PASSWORD",),
    )
    reg.define("DB_POSTGRESDB_PORT", Static("5432"))

    # Redis (queue mode)
    reg.define("QUEUE_BULL_REDIS_HOST", Derived(("REDIS_HOST",), _ref("REDIS_HOST")))
    reg.define("QUEUE_BULL_REDIS_PORT", Derived(("REDIS_PORT",), _ref("REDIS_PORT")))
    reg.define(
        "QUEUE_BULL_REDIS_DB", Derived(("REDIS_DB_INDEX",), _ref("REDIS_DB_INDEX"))
    )
    reg.define(
        "QUEUE_BULL_REDIS_PASSWORD",
        Interactive("Redis 비밀번호 (기존 Memorystore 인스턴스, 없으면 Enter)"),
        required=False,
        aliases=("REDIS_PASSWORD",),
    )
    reg.define("EXECUTIONS_MODE", Static("queue"))

    # Cloud Storage (S3 호환)
    reg.define("N8N_DEFAULT_BINARY_DATA_MODE", Static("s3"))
    reg.define(
        "N8N_EXTERNAL_STORAGE_S3_BUCKET_NAME",
        Derived(("STORAGE_BUCKET",), _ref("STORAGE_BUCKET")),
    )
    reg.define(
        "N8N_EXTERNAL_STORAGE_S3_BUCKET_REGION",
        Derived(("GCP_REGION",), _ref("GCP_REGION")),
    )
    reg.define("N8N_EXTERNAL_STORAGE_S3_HOST", Static("https://storage.googleapis.com"))
    reg.define(
        "N8N_EXTERNAL_STORAGE_S3_ACCESS_KEY",
        Interactive("GCS HMAC Access Key (없으면 Enter)"),
        required=False,
        aliases=("GCS_ACCESS_KEY",),
    )
    reg.define(
        "N8N_EXTERNAL_STORAGE_S3_ACCESS_SECRET",
        Interactive("GCS HMAC Secret Key (없으면 Enter)"),
        required=False,
        aliases=("GCS_SECRET_KEY",),
    )

    # Security
    reg.define("N8N_ENCRYPTION_KEY", Generated("n8n 암호화 키"))

    return reg.freeze()

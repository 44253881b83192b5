from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional

from . import image_build
from .backends import Backends, GcpInventory
from .config import ProjectConfig
from .errors import MissingDependency, OperationAborted
from .gcp_auth import require_tools
from .gcp_cloud_run import ServiceSpec
from .gcp_project import SECRET_MANAGER_API
from .logging_utils import get_logger
from .reconciler import reconcile
from .registry import Registry
from .resolver import ClickConfirmer, Confirmer, Prompter, ResolvedValue, resolve
from .safety import (
    ProtectedResources,
    ResourceKind,
    ResourceRef,
    SafetyReport,
    check,
    require_confirmation,
)
from .subprocess_utils import RunResult, run_command
from .verifier import verify


logger = get_logger(__name__)

DB_PASSWORD_VAR = "DB_POSTGRESDB_PASSWORD"
ENCRYPTION_KEY_VAR = "N8N_ENCRYPTION_KEY"


@dataclass
class RunContext:
    """
    한 번의 CLI 실행 동안 모든 단계가 공유하는 컨텍스트.
    overrides 는 실행 시작 시점 환경변수의 스냅샷이다.

    destructive_confirmer 는 데이터를 되돌릴 수 없게 만드는 질문
    (데이터베이스 재생성, 암호화 키 교체) 에만 쓰이며 --yes / SKIP_CONFIRM 의
    영향을 받지 않는다.
    """

    cfg: ProjectConfig
    registry: Registry
    backends: Backends
    overrides: Mapping[str, str]
    prompter: Prompter
    confirmer: Confirmer
    destructive_confirmer: Confirmer = field(default_factory=ClickConfirmer)
    generators: Dict[str, Callable[[], str]] = field(default_factory=dict)
    cache: Dict[str, ResolvedValue] = field(default_factory=dict)
    runner: Callable[..., RunResult] = run_command

    @property
    def protected(self) -> ProtectedResources:
        return ProtectedResources.from_config(self.cfg)

    def resolve(self, only: Optional[List[str]] = None) -> Dict[str, ResolvedValue]:
        return resolve(
            self.registry,
            self.overrides,
            self.prompter,
            self.generators,
            cache=self.cache,
            protected=self.protected.by_kind(),
            only=only,
        )


def _header(title: str, cfg: ProjectConfig) -> List[str]:
    return [f"# {title}", f"- project: {cfg.gcp_project}", f"- region: {cfg.gcp_region}", ""]


def plan_all(ctx: RunContext) -> str:
    """
    현재 설정과 레지스트리 내용을 요약한다. 원격 호출/입력 요청은 하지 않는다.
    """
    cfg = ctx.cfg
    lines = _header("Deploy plan", cfg)

    lines.append("## Config summary")
    lines.append(f"- cloud_sql_instance: {cfg.cloud_sql_instance}")
    lines.append(f"- database: {cfg.db_name} (user: {cfg.db_user})")
    lines.append(f"- redis: {cfg.redis_instance} ({cfg.redis_host}:{cfg.redis_port}, db={cfg.redis_db_index})")
    lines.append(f"- storage_bucket: {cfg.storage_bucket}")
    lines.append(f"- cloud_run_service: {cfg.cloud_run_service}")
    lines.append(f"- image: {cfg.image_ref}")
    lines.append(f"- secret_prefix: {cfg.secret_prefix}")
    lines.append(f"- protected databases: {', '.join(sorted(cfg.protected_databases)) or '(none)'}")
    lines.append(f"- protected users: {', '.join(sorted(cfg.protected_users)) or '(none)'}")
    lines.append(f"- protected services: {', '.join(sorted(cfg.protected_services)) or '(none)'}")
    lines.append("")

    lines.append("## Variables")
    for var in ctx.registry:
        if not var.publish:
            continue
        flags = [var.kind.value]
        if not var.required:
            flags.append("optional")
        if any(ctx.overrides.get(k) for k in var.override_keys):
            flags.append("env override")
        lines.append(f"- {cfg.secret_prefix}{var.name}: {', '.join(flags)}")

    return "\n".join(lines)


def _safety_report(
    ctx: RunContext,
    *,
    expected: List[ResourceRef],
    dependencies: List[ResourceRef],
    observe: bool = True,
) -> SafetyReport:
    cfg = ctx.cfg
    inventory = GcpInventory(cfg, ctx.backends)
    observed = None
    if observe:
        observed = {
            ResourceKind.DATABASE: sorted(cfg.protected_databases),
            ResourceKind.USER: sorted(cfg.protected_users),
            ResourceKind.SERVICE: sorted(cfg.protected_services),
        }
    report = check(
        expected,
        ctx.protected,
        inventory,
        dependencies=dependencies,
        observe_protected=observed,
    )
    return report


def safety_check(ctx: RunContext) -> tuple[str, bool]:
    """
    변경 작업 전에 기존(docmost) 인프라를 손상시키지 않는지 확인한다.

    Returns:
        summary: 사람이 읽기 좋은 텍스트 요약
        has_errors: 선행 리소스 없음 / 보호 리소스 충돌이 있는지 여부
    """
    cfg = ctx.cfg
    ctx.backends.auth.require()

    # 선행 리소스가 없으면 그 리소스 안의 항목은 조회할 수 없으므로 기대 목록에서 뺀다.
    instance = ResourceRef(ResourceKind.SQL_INSTANCE, cfg.sql_instance_name)
    dependencies = [
        instance,
        ResourceRef(ResourceKind.REDIS_INSTANCE, cfg.redis_instance),
        ResourceRef(ResourceKind.BUCKET, cfg.storage_bucket),
    ]
    expected = [ResourceRef(ResourceKind.SERVICE, cfg.cloud_run_service)]
    if ctx.backends.sql.instance_exists(cfg.sql_instance_name):
        expected = [
            ResourceRef(ResourceKind.DATABASE, cfg.db_name),
            ResourceRef(ResourceKind.USER, cfg.db_user),
        ] + expected

    report = _safety_report(ctx, expected=expected, dependencies=dependencies)

    secrets = ctx.backends.secrets.list()
    ours = [s for s in secrets if s.startswith(cfg.secret_prefix)]
    report.untouched[ResourceKind.SECRET] = [s for s in secrets if not s.startswith(cfg.secret_prefix)]
    if ours:
        report.warnings.append(
            f"'{cfg.secret_prefix}' prefix Secret {len(ours)}개가 이미 있습니다 (재실행 시 새 버전이 추가됨)."
        )

    lines = _header("Safety check", cfg)
    lines.append(report.render())
    if not report.has_errors:
        lines.append("")
        lines.append("## This setup will NOT")
        lines.append(f"- modify databases: {', '.join(sorted(cfg.protected_databases)) or '(none)'}")
        lines.append(f"- modify users: {', '.join(sorted(cfg.protected_users)) or '(none)'}")
        lines.append(f"- modify secrets without prefix '{cfg.secret_prefix}'")
        lines.append(f"- modify services: {', '.join(sorted(cfg.protected_services)) or '(none)'}")
        lines.append("- modify Redis instance or Cloud Storage bucket configuration")
    return "\n".join(lines), report.has_errors


def setup_database(ctx: RunContext) -> str:
    """
    기존 Cloud SQL 인스턴스에 n8n 데이터베이스/유저를 만든다.
    인스턴스가 없으면 어떤 생성도 시도하지 않고 MissingDependency.
    """
    cfg = ctx.cfg
    sql = ctx.backends.sql
    instance = cfg.sql_instance_name
    protected = ctx.protected

    ctx.backends.auth.require()

    database_ref = ResourceRef(ResourceKind.DATABASE, cfg.db_name)
    user_ref = ResourceRef(ResourceKind.USER, cfg.db_user)
    protected.ensure_not_protected(database_ref)
    protected.ensure_not_protected(user_ref)

    report = _safety_report(
        ctx,
        expected=[],
        dependencies=[ResourceRef(ResourceKind.SQL_INSTANCE, instance)],
    )
    if report.has_errors:
        raise MissingDependency(ResourceKind.SQL_INSTANCE.value, instance)
    logger.info("Cloud SQL 인스턴스 확인: %s", instance)

    for db in sql.list_databases(instance):
        if db != cfg.db_name:
            logger.info("기존 데이터베이스 (변경하지 않음): %s", db)

    if not ctx.confirmer.confirm(
        f"Cloud SQL '{instance}' 에 데이터베이스 '{cfg.db_name}' / 유저 '{cfg.db_user}' 를 준비합니다. 계속할까요?",
        default=False,
    ):
        raise OperationAborted("사용자가 중단했습니다.")

    password = ctx.resolve(only=[DB_PASSWORD_VAR])[DB_PASSWORD_VAR].value

    lines = _header("Database setup", cfg)
    lines.append(f"- instance: {cfg.cloud_sql_instance}")

    if sql.database_exists(instance, cfg.db_name):
        if ctx.destructive_confirmer.confirm(
            f"데이터베이스 '{cfg.db_name}' 가 이미 있습니다. 다시 만들까요? 모든 데이터가 삭제됩니다!",
            default=False,
        ):
            sql.delete_database(instance, cfg.db_name)
            sql.create_database(instance, cfg.db_name)
            lines.append(f"- database {cfg.db_name}: recreated")
        else:
            lines.append(f"- database {cfg.db_name}: kept (existing)")
    else:
        sql.create_database(instance, cfg.db_name)
        lines.append(f"- database {cfg.db_name}: created")

    if sql.user_exists(instance, cfg.db_user):
        if ctx.confirmer.confirm(
            f"유저 '{cfg.db_user}' 가 이미 있습니다. 비밀번호를 변경할까요?",
            default=False,
        ):
            sql.set_password(instance, cfg.db_user, password)
            lines.append(f"- user {cfg.db_user}: password updated")
        else:
            lines.append(f"- user {cfg.db_user}: kept (existing)")
    else:
        sql.create_user(instance, cfg.db_user, password)
        lines.append(f"- user {cfg.db_user}: created")

    sql.grant_privileges(instance, cfg.db_name, cfg.db_user)
    lines.append(f"- privileges: granted on {cfg.db_name} to {cfg.db_user}")
    lines.append("")
    lines.append("다음 단계: setup-secrets (같은 비밀번호를 DB_PASSWORD 로 제공하세요)")
    return "\n".join(lines)


def _keep_existing_encryption_key(ctx: RunContext) -> bool:
    """
    이미 발급된 암호화 키를 그대로 둘지 결정한다.
    키가 바뀌면 n8n 에 저장된 자격 증명을 더 이상 복호화할 수 없다.
    """
    var = ctx.registry.variable(ENCRYPTION_KEY_VAR)
    if any(ctx.overrides.get(k) for k in var.override_keys):
        return False
    secret_name = f"{ctx.cfg.secret_prefix}{ENCRYPTION_KEY_VAR}"
    if not ctx.backends.secrets.exists(secret_name):
        return False
    if ctx.destructive_confirmer.confirm(
        f"'{secret_name}' 가 이미 있습니다. 새 암호화 키를 생성할까요? "
        "기존에 저장된 n8n 자격 증명을 복호화할 수 없게 됩니다!",
        default=False,
    ):
        logger.warning("암호화 키를 새로 생성합니다: %s", secret_name)
        return False
    logger.info("기존 암호화 키를 유지합니다: %s", secret_name)
    return True


def setup_secrets(ctx: RunContext) -> tuple[str, bool]:
    """
    레지스트리의 값을 해석하여 prefix 가 붙은 Secret 으로 반영한다.
    이미 있는 n8n Secret 에 새 버전을 추가하기 전에 확인을 받는다.

    Returns:
        summary: 사람이 읽기 좋은 텍스트 요약
        has_failures: 하나 이상의 Secret 반영이 실패했는지 여부
    """
    cfg = ctx.cfg
    ctx.backends.auth.require()
    ctx.registry.validate_overrides(ctx.overrides, ctx.protected.by_kind())

    others = [s for s in ctx.backends.secrets.list() if not s.startswith(cfg.secret_prefix)]
    for name in others[:5]:
        logger.info("기존 Secret (변경하지 않음): %s", name)
    if len(others) > 5:
        logger.info("... 외 %d개", len(others) - 5)

    report = _safety_report(
        ctx,
        expected=[
            ResourceRef(ResourceKind.SECRET, f"{cfg.secret_prefix}{name}")
            for name in ctx.registry.published_names()
        ],
        dependencies=[],
        observe=False,
    )
    require_confirmation(
        report,
        ctx.confirmer,
        question=(
            f"'{cfg.secret_prefix}' Secret {len(report.needs_confirmation)}개가 이미 있습니다. "
            "새 버전을 추가할까요?"
        ),
    )

    only = None
    kept: List[str] = []
    if _keep_existing_encryption_key(ctx):
        only = [n for n in ctx.registry.names() if n != ENCRYPTION_KEY_VAR]
        kept.append(f"{cfg.secret_prefix}{ENCRYPTION_KEY_VAR}")

    ctx.backends.enable_api(SECRET_MANAGER_API)

    resolved = ctx.resolve(only=only)
    result = reconcile(
        resolved,
        ctx.backends.secrets,
        principal=cfg.service_account,
        prefix=cfg.secret_prefix,
        registry=ctx.registry,
    )

    lines = _header("Secrets setup", cfg)
    lines.append(f"- secret prefix: {cfg.secret_prefix}")
    lines.append(f"- untouched secrets without prefix: {len(others)}")
    for name in kept:
        lines.append(f"- {name}: kept (existing version, no new version)")
    lines.append("")
    lines.append(result.render())
    return "\n".join(lines), result.has_failures


def verify_all(ctx: RunContext) -> tuple[str, bool]:
    """
    Returns:
        summary: 사람이 읽기 좋은 텍스트 요약
        has_missing: 누락된 구성요소가 있는지 여부 (배포 진행 불가)
    """
    ctx.backends.auth.require()
    report = verify(ctx.registry, ctx.cfg, ctx.backends)
    lines = _header("Infrastructure verification", ctx.cfg)
    lines.append("이 점검은 기존 리소스를 변경하지 않습니다.")
    lines.append("")
    lines.append(report.render())
    return "\n".join(lines), not report.ready


def build(ctx: RunContext) -> str:
    require_tools("pnpm")
    compiled = image_build.build_application(ctx.cfg.repo_root, ctx.runner)
    return "\n".join(
        [
            "# Build",
            f"- output: {compiled}",
            "",
            "다음 단계: push-and-deploy",
        ]
    )


def push_and_deploy(ctx: RunContext, *, skip_build_check: bool = False) -> str:
    """
    이미지 빌드/푸시 -> Secret 확인 -> Cloud Run 배포 -> 준비 상태 폴링.
    """
    cfg = ctx.cfg
    b = ctx.backends

    require_tools("gcloud", "docker")
    b.auth.require()

    service_ref = ResourceRef(ResourceKind.SERVICE, cfg.cloud_run_service)
    ctx.protected.ensure_not_protected(service_ref)

    b.auth.configure_docker()
    built = image_build.build_and_push_image(cfg, ctx.runner, require_compiled=not skip_build_check)

    lines = _header("Push and deploy", cfg)
    lines.append(f"- image: {built.image} (commit={built.git_commit}, version={built.version})")

    if b.cloud_run.image_exists(built.image):
        digest = b.cloud_run.image_digest(built.image)
        lines.append(f"- image verified: {digest or '(digest unknown)'}")
    else:
        logger.warning("레지스트리에서 이미지를 확인하지 못했습니다: %s", built.image)
        lines.append("- image verified: no (warning)")

    missing = [
        f"{cfg.secret_prefix}{name}"
        for name in ctx.registry.published_names()
        if ctx.registry.variable(name).required
        and not b.secrets.exists(f"{cfg.secret_prefix}{name}")
    ]
    if missing:
        raise MissingDependency(ResourceKind.SECRET.value, ", ".join(missing))

    report = _safety_report(ctx, expected=[service_ref], dependencies=[])
    require_confirmation(
        report,
        ctx.confirmer,
        question=f"Cloud Run 서비스 '{cfg.cloud_run_service}' 가 이미 있습니다. 새 리비전으로 업데이트할까요?",
    )

    yaml_path = cfg.cloudrun_yaml
    if not os.path.isabs(yaml_path):
        yaml_path = os.path.join(cfg.repo_root, yaml_path)
    result = b.cloud_run.deploy(
        ServiceSpec(
            name=cfg.cloud_run_service,
            region=cfg.gcp_region,
            yaml_path=yaml_path,
            image=built.image,
            image_placeholder=f"{cfg.image_repository}:latest",
        )
    )
    status = b.cloud_run.wait_until_ready(
        cfg.cloud_run_service,
        cfg.gcp_region,
        attempts=cfg.readiness_poll_attempts,
        interval=cfg.readiness_poll_interval,
    )

    lines.append(f"- service: {cfg.cloud_run_service}")
    lines.append(f"- url: {status.url or result.url or '(unknown)'}")
    lines.append(f"- ready: {'yes' if status.ready else 'no (' + (status.raw_status or 'UNKNOWN') + ')'}")
    lines.append("")
    lines.append(
        "로그 확인: gcloud run services logs read "
        f"{cfg.cloud_run_service} --region={cfg.gcp_region} --project={cfg.gcp_project}"
    )
    return "\n".join(lines)

"""
verifier
--------

배포 전에 인프라가 준비되었는지 읽기 전용으로 점검한다.
누락 항목을 보고만 하고 절대 고치지 않는다 (조치는 setup-* 명령의 몫).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from typing import Callable, List, Tuple, TypeVar

from .backends import Backends
from .config import ProjectConfig
from .logging_utils import get_logger
from .registry import Registry


logger = get_logger(__name__)

T = TypeVar("T")


REQUIRED_PROJECT_ROLES = ["roles/secretmanager.secretAccessor", "roles/cloudsql.client"]


class CheckStatus(str, Enum):
    SATISFIED = "satisfied"
    MISSING = "missing"
    DEGRADED = "degraded"
    WARNING = "warning"


@dataclass(frozen=True)
class CheckResult:
    section: str
    subject: str
    status: CheckStatus
    detail: str = ""


@dataclass
class VerificationReport:
    results: List[CheckResult] = field(default_factory=list)

    def add(self, section: str, subject: str, status: CheckStatus, detail: str = "") -> None:
        self.results.append(CheckResult(section, subject, status, detail))

    def _count(self, status: CheckStatus) -> int:
        return sum(1 for r in self.results if r.status is status)

    @property
    def satisfied(self) -> int:
        return self._count(CheckStatus.SATISFIED)

    @property
    def missing(self) -> int:
        return self._count(CheckStatus.MISSING)

    @property
    def degraded(self) -> int:
        return self._count(CheckStatus.DEGRADED)

    @property
    def warnings(self) -> int:
        return self._count(CheckStatus.WARNING) + self.degraded

    @property
    def ready(self) -> bool:
        return self.missing == 0

    def missing_subjects(self, section: str | None = None) -> List[str]:
        return [
            r.subject
            for r in self.results
            if r.status is CheckStatus.MISSING and (section is None or r.section == section)
        ]

    def render(self) -> str:
        marks = {
            CheckStatus.SATISFIED: "OK",
            CheckStatus.MISSING: "MISSING",
            CheckStatus.DEGRADED: "DEGRADED",
            CheckStatus.WARNING: "WARN",
        }
        lines: List[str] = []
        section = None
        for r in self.results:
            if r.section != section:
                if section is not None:
                    lines.append("")
                lines.append(f"## {r.section}")
                section = r.section
            detail = f" ({r.detail})" if r.detail else ""
            lines.append(f"- [{marks[r.status]}] {r.subject}{detail}")

        lines.append("")
        lines.append("## Summary")
        lines.append(f"- satisfied: {self.satisfied}")
        lines.append(f"- missing: {self.missing}")
        lines.append(f"- degraded: {self.degraded}")
        lines.append(f"- warnings: {self.warnings}")
        if self.ready:
            lines.append("- 상태: 모든 인프라 구성요소가 준비되었습니다. 배포를 진행할 수 있습니다.")
        else:
            lines.append("- 상태: 누락된 구성요소가 있습니다. 배포 전에 setup 명령으로 해결하세요.")
        return "\n".join(lines)


def _lookup(label: str, fn: Callable[[], T], fallback: T) -> Tuple[T, str]:
    """원격 조회 한 건. 실패하면 fallback 과 실패 사유를 돌려준다."""
    try:
        return fn(), ""
    except Exception as e:  # noqa: BLE001
        logger.warning("%s 조회 실패: %s", label, e)
        return fallback, f"조회 실패: {e}"


def verify(registry: Registry, cfg: ProjectConfig, backends: Backends) -> VerificationReport:
    """
    기대 상태는 레지스트리와 설정에서만 도출한다 (특정 해석 결과와 무관).
    원격 조회 실패는 해당 항목만 MISSING 으로 기록하고 나머지 점검은 계속한다.
    """
    report = VerificationReport()

    # Cloud SQL
    instance = cfg.sql_instance_name
    found, error = _lookup(
        f"Cloud SQL 인스턴스 {instance}", lambda: backends.sql.instance_exists(instance), False
    )
    if found:
        report.add("Cloud SQL", f"instance {instance}", CheckStatus.SATISFIED)
        for subject, check in (
            (f"database {cfg.db_name}", lambda: backends.sql.database_exists(instance, cfg.db_name)),
            (f"user {cfg.db_user}", lambda: backends.sql.user_exists(instance, cfg.db_user)),
        ):
            ok, detail = _lookup(subject, check, False)
            report.add(
                "Cloud SQL", subject, CheckStatus.SATISFIED if ok else CheckStatus.MISSING, detail
            )
    else:
        report.add("Cloud SQL", f"instance {instance}", CheckStatus.MISSING, error)

    # Redis
    info, error = _lookup(
        f"Redis 인스턴스 {cfg.redis_instance}",
        lambda: backends.redis.describe(cfg.redis_instance, cfg.gcp_region),
        None,
    )
    if info is None:
        report.add("Redis", f"instance {cfg.redis_instance}", CheckStatus.MISSING, error)
    elif info.ready:
        report.add(
            "Redis",
            f"instance {cfg.redis_instance}",
            CheckStatus.SATISFIED,
            f"READY, {cfg.redis_host}:{cfg.redis_port} db={cfg.redis_db_index}",
        )
    else:
        report.add(
            "Redis", f"instance {cfg.redis_instance}", CheckStatus.DEGRADED, f"state={info.state}"
        )

    # Cloud Storage
    bucket_ok, error = _lookup(
        f"버킷 {cfg.storage_bucket}",
        lambda: backends.buckets.bucket_exists(cfg.storage_bucket),
        False,
    )
    report.add(
        "Cloud Storage",
        f"bucket {cfg.storage_bucket}",
        CheckStatus.SATISFIED if bucket_ok else CheckStatus.MISSING,
        error,
    )

    # Secrets
    for name in registry.published_names():
        secret_name = f"{cfg.secret_prefix}{name}"
        found, error = _lookup(f"Secret {secret_name}", partial(backends.secrets.exists, secret_name), False)
        if found:
            report.add("Secret Manager", secret_name, CheckStatus.SATISFIED)
        elif error:
            report.add("Secret Manager", secret_name, CheckStatus.MISSING, error)
        elif registry.variable(name).required:
            report.add("Secret Manager", secret_name, CheckStatus.MISSING)
        else:
            report.add("Secret Manager", secret_name, CheckStatus.WARNING, "선택 항목, 값이 없으면 생성되지 않음")

    # Service account roles
    member = f"serviceAccount:{cfg.service_account}"
    roles, error = _lookup(f"{member} 역할", lambda: backends.roles(member), [])
    for role in REQUIRED_PROJECT_ROLES:
        if role in roles:
            report.add("IAM", f"{cfg.service_account} {role}", CheckStatus.SATISFIED)
        else:
            report.add(
                "IAM",
                f"{cfg.service_account} {role}",
                CheckStatus.WARNING,
                error or "프로젝트 수준 권한이 없습니다 (Secret 단위 권한이 있을 수 있음)",
            )

    logger.info(
        "인프라 검증 완료: satisfied=%d missing=%d degraded=%d",
        report.satisfied,
        report.missing,
        report.degraded,
    )
    return report

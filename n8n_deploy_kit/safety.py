"""
safety
------

변경 작업 전에 원격 상태를 읽어서, 이번 워크플로우가 건드리게 될 리소스를
분류하는 안전 점검 모듈. 이 모듈은 어떤 변경 호출도 하지 않는다.

분류 우선순위:
  1. 보호 대상 이름과 일치 -> protected (변경 시도는 항상 ProtectedResourceViolation)
  2. 생성하려는 리소스가 이미 있음 -> existing-needs-confirmation
  3. 없고 보호 대상도 아님 -> new
  4. 선행 리소스가 없음 -> missing-dependency (항상 오류)

분류 결과는 실행마다 새로 계산하며 캐시하지 않는다.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Mapping, Protocol, Sequence

from .config import ProjectConfig
from .errors import ExistingResourceNeedsConfirmation, ProtectedResourceViolation
from .logging_utils import get_logger


logger = get_logger(__name__)


class ResourceKind(str, Enum):
    SQL_INSTANCE = "sql-instance"
    DATABASE = "database"
    USER = "user"
    REDIS_INSTANCE = "redis-instance"
    BUCKET = "bucket"
    SECRET = "secret"
    SERVICE = "service"
    IMAGE = "image"


@dataclass(frozen=True)
class ResourceRef:
    kind: ResourceKind
    name: str

    def __str__(self) -> str:
        return f"{self.kind.value} '{self.name}'"


class Classification(str, Enum):
    NEW = "new"
    EXISTING_REUSABLE = "existing-reusable"
    EXISTING_NEEDS_CONFIRMATION = "existing-needs-confirmation"
    PROTECTED = "protected"
    MISSING_DEPENDENCY = "missing-dependency"


@dataclass(frozen=True)
class ProtectedResources:
    databases: FrozenSet[str] = frozenset()
    users: FrozenSet[str] = frozenset()
    services: FrozenSet[str] = frozenset()
    # 이 prefix 로 시작하지 않는 Secret 은 모두 보호 대상
    secret_prefix: str = ""

    @classmethod
    def from_config(cls, cfg: ProjectConfig) -> "ProtectedResources":
        return cls(
            databases=frozenset(cfg.protected_databases),
            users=frozenset(cfg.protected_users),
            services=frozenset(cfg.protected_services),
            secret_prefix=cfg.secret_prefix,
        )

    def by_kind(self) -> Dict[str, FrozenSet[str]]:
        return {
            ResourceKind.DATABASE.value: self.databases,
            ResourceKind.USER.value: self.users,
            ResourceKind.SERVICE.value: self.services,
        }

    def contains(self, ref: ResourceRef) -> bool:
        if ref.kind is ResourceKind.DATABASE:
            return ref.name in self.databases
        if ref.kind is ResourceKind.USER:
            return ref.name in self.users
        if ref.kind is ResourceKind.SERVICE:
            return ref.name in self.services
        if ref.kind is ResourceKind.SECRET:
            return not self.secret_prefix or not ref.name.startswith(self.secret_prefix)
        return False

    def ensure_not_protected(self, ref: ResourceRef) -> None:
        """변경 호출 직전에 반드시 거치는 가드."""
        if self.contains(ref):
            raise ProtectedResourceViolation(ref.kind.value, ref.name)


class Inventory(Protocol):
    """원격 상태 조회 (읽기 전용)."""

    def exists(self, ref: ResourceRef) -> bool:
        ...


@dataclass(frozen=True)
class SafetyEntry:
    ref: ResourceRef
    classification: Classification
    note: str = ""


@dataclass
class SafetyReport:
    entries: List[SafetyEntry] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    # 보호 대상은 아니지만 이 워크플로우 범위 밖이라 건드리지 않는 리소스
    untouched: Dict[ResourceKind, List[str]] = field(default_factory=dict)

    def add(self, ref: ResourceRef, classification: Classification, note: str = "") -> None:
        self.entries.append(SafetyEntry(ref, classification, note))

    def by_classification(self, classification: Classification) -> List[ResourceRef]:
        return [e.ref for e in self.entries if e.classification is classification]

    def classification_of(self, ref: ResourceRef) -> Classification | None:
        for e in self.entries:
            if e.ref == ref:
                return e.classification
        return None

    @property
    def needs_confirmation(self) -> List[ResourceRef]:
        return self.by_classification(Classification.EXISTING_NEEDS_CONFIRMATION)

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    def render(self) -> str:
        icons = {
            Classification.NEW: "생성 예정 (new, safe)",
            Classification.EXISTING_REUSABLE: "이미 존재함 (재사용)",
            Classification.EXISTING_NEEDS_CONFIRMATION: "이미 존재함 (변경 시 확인 필요)",
            Classification.PROTECTED: "보호 대상 (변경하지 않음)",
            Classification.MISSING_DEPENDENCY: "선행 리소스 없음",
        }
        lines: List[str] = []
        lines.append("## Classification")
        if self.entries:
            for e in self.entries:
                note = f" - {e.note}" if e.note else ""
                lines.append(f"- {e.ref}: {icons[e.classification]}{note}")
        else:
            lines.append("- (none)")

        for kind, names in self.untouched.items():
            if not names:
                continue
            lines.append("")
            lines.append(f"## Untouched {kind.value} ({len(names)})")
            for name in names[:5]:
                lines.append(f"- {name} (will NOT be modified)")
            if len(names) > 5:
                lines.append(f"- ... and {len(names) - 5} more")

        lines.append("")
        lines.append(f"## Summary (errors={len(self.errors)}, warnings={len(self.warnings)})")
        for msg in self.errors:
            lines.append(f"- [ERROR] {msg}")
        for msg in self.warnings:
            lines.append(f"- [WARN] {msg}")
        if not self.errors:
            lines.append("- 안전 점검 통과: 기존 리소스를 손상시키지 않고 진행할 수 있습니다.")
        return "\n".join(lines)


def check(
    expected: Sequence[ResourceRef],
    protected: ProtectedResources,
    inventory: Inventory,
    dependencies: Sequence[ResourceRef] = (),
    reusable: Iterable[ResourceRef] = (),
    observe_protected: Mapping[ResourceKind, Iterable[str]] | None = None,
) -> SafetyReport:
    """
    expected: 이번 워크플로우가 생성/변경하려는 리소스
    dependencies: 존재해야만 진행 가능한 선행 리소스 (Cloud SQL 인스턴스 등)
    reusable: 이미 있으면 그대로 재사용하는 리소스 (확인 불필요)
    observe_protected: 원격에 존재 여부만 보고할 보호 대상 이름들
    """
    report = SafetyReport()
    reusable_set = set(reusable)

    for dep in dependencies:
        if inventory.exists(dep):
            report.add(dep, Classification.EXISTING_REUSABLE, "선행 리소스 확인됨")
        else:
            report.add(dep, Classification.MISSING_DEPENDENCY)
            report.errors.append(f"{dep} 을(를) 찾을 수 없습니다.")

    for ref in expected:
        if protected.contains(ref):
            report.add(ref, Classification.PROTECTED, "생성/변경 대상과 충돌")
            report.errors.append(f"{ref} 은(는) 보호된 리소스라 이 워크플로우에서 사용할 수 없습니다.")
            continue

        if inventory.exists(ref):
            if ref in reusable_set:
                report.add(ref, Classification.EXISTING_REUSABLE)
            else:
                report.add(ref, Classification.EXISTING_NEEDS_CONFIRMATION)
                report.warnings.append(f"{ref} 이(가) 이미 존재합니다 (변경 전 확인 필요).")
        else:
            report.add(ref, Classification.NEW)

    for kind, names in (observe_protected or {}).items():
        for name in names:
            ref = ResourceRef(kind, name)
            if ref in expected:
                continue
            if inventory.exists(ref):
                report.add(ref, Classification.PROTECTED, "기존 리소스 확인됨")

    logger.info(
        "안전 점검 완료: entries=%d errors=%d warnings=%d",
        len(report.entries),
        len(report.errors),
        len(report.warnings),
    )
    return report


def require_confirmation(report: SafetyReport, confirmer, *, question: str | None = None) -> None:  # noqa: ANN001
    """
    existing-needs-confirmation 리소스가 있으면 운영자에게 명시적으로 묻는다.
    거부하면 ExistingResourceNeedsConfirmation (호출 측에서 exit 0 으로 처리).
    """
    pending = report.needs_confirmation
    if not pending:
        return
    names = [str(r) for r in pending]
    text = question or ("다음 리소스가 이미 존재합니다: " + ", ".join(names) + ". 계속할까요?")
    if not confirmer.confirm(text, default=False):
        raise ExistingResourceNeedsConfirmation(names)

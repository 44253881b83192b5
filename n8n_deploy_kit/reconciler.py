"""
reconciler
----------

해석된 값들을 Secret 저장소에 create-or-update 로 반영한다.

- 없으면 초기 버전과 함께 생성, 있으면 새 버전 추가 (이전 버전은 지우지 않는다)
- 동시에 다른 실행이 먼저 만들었다면 (SecretAlreadyExists) 새 버전 추가로 진행
- 서비스 계정에 읽기 권한 부여. 이미 부여되어 있어도 실패가 아니다
- 한 변수의 실패는 기록만 하고 나머지 변수는 계속 처리한다
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Mapping, Optional, Protocol

from .errors import SecretAlreadyExists
from .logging_utils import get_logger
from .registry import Registry
from .resolver import ResolvedValue


logger = get_logger(__name__)


SECRET_ACCESSOR_ROLE = "roles/secretmanager.secretAccessor"


class SecretStore(Protocol):
    def exists(self, name: str) -> bool:
        ...

    def create(self, name: str, content: str) -> None:
        ...

    def add_version(self, name: str, content: str) -> None:
        ...

    def grant_access(self, name: str, principal: str, role: str) -> bool:
        """새로 부여했으면 True, 이미 부여되어 있었으면 False."""
        ...

    def list(self, prefix: str = "") -> List[str]:
        ...


class Action(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    FAILED = "failed"


@dataclass(frozen=True)
class ReconciledItem:
    variable: str
    secret_name: str
    action: Action
    granted: Optional[bool] = None
    error: str = ""


@dataclass
class ReconciliationReport:
    items: List[ReconciledItem] = field(default_factory=list)

    @property
    def touched(self) -> List[str]:
        return [i.secret_name for i in self.items if i.action is not Action.FAILED]

    @property
    def failures(self) -> List[ReconciledItem]:
        return [i for i in self.items if i.action is Action.FAILED]

    @property
    def has_failures(self) -> bool:
        return bool(self.failures)

    def count(self, action: Action) -> int:
        return sum(1 for i in self.items if i.action is action)

    def render(self) -> str:
        lines: List[str] = []
        lines.append("## Secrets")
        for item in self.items:
            if item.action is Action.FAILED:
                lines.append(f"- {item.secret_name}: FAILED ({item.error})")
                continue
            grant = "access granted" if item.granted else "access already granted"
            lines.append(f"- {item.secret_name}: {item.action.value} ({grant})")
        if not self.items:
            lines.append("- (none)")
        lines.append("")
        lines.append(
            "## Summary "
            f"(created={self.count(Action.CREATED)}, "
            f"updated={self.count(Action.UPDATED)}, "
            f"failed={self.count(Action.FAILED)})"
        )
        return "\n".join(lines)


def reconcile(
    resolved: Mapping[str, ResolvedValue],
    store: SecretStore,
    *,
    principal: str,
    prefix: str,
    registry: Optional[Registry] = None,
    role: str = SECRET_ACCESSOR_ROLE,
) -> ReconciliationReport:
    """
    registry 가 주어지면 publish=False 인 설정 변수는 Secret 으로 올리지 않는다.
    """
    report = ReconciliationReport()

    for name, rv in resolved.items():
        if registry is not None and not registry.variable(name).publish:
            continue
        if not rv.value:
            logger.warning("값이 비어 있어 %s%s 을(를) 건너뜁니다.", prefix, name)
            continue

        secret_name = f"{prefix}{name}"
        try:
            action = _create_or_update(store, secret_name, rv.value)
        except Exception as e:  # noqa: BLE001
            logger.error("Secret 반영 실패: %s: %s", secret_name, e)
            report.items.append(
                ReconciledItem(name, secret_name, Action.FAILED, error=str(e))
            )
            continue

        try:
            granted = store.grant_access(secret_name, principal, role)
        except Exception as e:  # noqa: BLE001
            logger.error("Secret 접근 권한 부여 실패: %s: %s", secret_name, e)
            report.items.append(
                ReconciledItem(
                    name, secret_name, Action.FAILED, error=f"grant 실패: {e}"
                )
            )
            continue

        report.items.append(ReconciledItem(name, secret_name, action, granted=granted))

    logger.info(
        "Secret 반영 완료: created=%d updated=%d failed=%d",
        report.count(Action.CREATED),
        report.count(Action.UPDATED),
        report.count(Action.FAILED),
    )
    return report


def _create_or_update(store: SecretStore, secret_name: str, content: str) -> Action:
    if store.exists(secret_name):
        logger.info("기존 Secret 에 새 버전을 추가합니다: %s", secret_name)
        store.add_version(secret_name, content)
        return Action.UPDATED

    logger.info("Secret 이 없어 새로 생성합니다: %s", secret_name)
    try:
        store.create(secret_name, content)
    except SecretAlreadyExists:
        logger.warning("다른 실행이 먼저 생성했습니다. 새 버전 추가로 진행합니다: %s", secret_name)
        store.add_version(secret_name, content)
        return Action.UPDATED
    return Action.CREATED

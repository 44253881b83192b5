"""
errors
------

배포 워크플로우 전반에서 사용하는 예외 정의.

치명적 오류는 현재 명령을 즉시 중단시키고, 일괄 처리 중 개별 원격 호출 실패
(RemoteOperationFailure)는 항목별로 기록된 뒤 마지막에 한 번만 보고된다.
"""

from __future__ import annotations

from typing import Optional


class DeployKitError(RuntimeError):
    """n8n_deploy_kit 예외의 공통 베이스."""


class PreconditionMissing(DeployKitError):
    """gcloud/docker 미설치, 인증 누락 등 필수 전제 조건이 없는 경우."""


class RegistryError(DeployKitError):
    """설정 레지스트리 정의 단계에서 발생하는 오류."""


class UnknownVariable(RegistryError):
    def __init__(self, name: str) -> None:
        super().__init__(f"정의되지 않은 설정 변수입니다: {name}")
        self.name = name


class DuplicateVariable(RegistryError):
    def __init__(self, name: str) -> None:
        super().__init__(f"이미 정의된 설정 변수입니다: {name}")
        self.name = name


class RegistryFrozen(RegistryError):
    """초기화가 끝난 레지스트리에 define 을 시도한 경우."""


class EmptyRequiredValue(DeployKitError):
    def __init__(self, name: str) -> None:
        super().__init__(f"필수 값이 비어 있습니다: {name}")
        self.name = name


class ProtectedResourceViolation(DeployKitError):
    """보호 대상 리소스를 생성/변경하려는 시도. 경고로 낮추지 않는다."""

    def __init__(self, kind: str, name: str) -> None:
        super().__init__(
            f"보호된 리소스입니다: {kind} '{name}' (이 워크플로우에서 변경할 수 없습니다)"
        )
        self.kind = kind
        self.name = name


class OperationAborted(DeployKitError):
    """운영자가 확인 질문에 'no' 로 답한 경우. 오류가 아니라 정상 중단(exit 0)."""


class ExistingResourceNeedsConfirmation(OperationAborted):
    """기존 리소스 덮어쓰기에 대해 운영자가 확인을 거부한 경우 (정상 중단)."""

    def __init__(self, names: list[str]) -> None:
        super().__init__(
            "기존 리소스 변경이 확인되지 않아 중단합니다: " + ", ".join(names)
        )
        self.names = names


class MissingDependency(DeployKitError):
    def __init__(self, kind: str, name: str) -> None:
        super().__init__(f"필수 선행 리소스가 없습니다: {kind} '{name}'")
        self.kind = kind
        self.name = name


class RemoteOperationFailure(DeployKitError):
    """단일 원격 호출(create/update/grant 등) 실패."""


class SecretAlreadyExists(RemoteOperationFailure):
    """동시에 다른 실행이 같은 Secret 을 먼저 생성한 경우."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Secret 이 이미 존재합니다: {name}")
        self.name = name


class CommandError(RemoteOperationFailure):
    """외부 명령(gcloud/docker/pnpm) 이 0 이 아닌 코드로 종료된 경우."""

    def __init__(
        self,
        message: str,
        *,
        returncode: Optional[int] = None,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        super().__init__(message)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr

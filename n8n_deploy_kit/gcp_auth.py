"""
gcp_auth
--------

gcloud 설치/인증 상태를 확인하는 유틸.
인증 여부는 프로세스 동안 한 번만 조회한다.
"""

from __future__ import annotations

import shutil
from typing import Callable, List, Optional

from .errors import PreconditionMissing
from .logging_utils import get_logger
from .subprocess_utils import RunResult, run_command


logger = get_logger(__name__)


def require_tools(*names: str) -> None:
    """필요한 CLI 가 PATH 에 없으면 PreconditionMissing."""
    missing = [n for n in names if shutil.which(n) is None]
    if missing:
        raise PreconditionMissing(
            "필요한 명령을 찾을 수 없습니다: " + ", ".join(missing)
        )


class GcloudAuth:
    def __init__(self, runner: Callable[..., RunResult] = run_command) -> None:
        self._run = runner
        self._account: Optional[str] = None
        self._checked = False

    def active_account(self) -> Optional[str]:
        if not self._checked:
            result = self._run(
                [
                    "gcloud",
                    "auth",
                    "list",
                    "--filter=status:ACTIVE",
                    "--format=value(account)",
                ],
                check=False,
            )
            accounts = [a.strip() for a in result.stdout.splitlines() if a.strip()] if result.ok else []
            self._account = accounts[0] if accounts else None
            self._checked = True
            logger.debug("gcloud 활성 계정: %s", self._account)
        return self._account

    def is_authenticated(self) -> bool:
        return self.active_account() is not None

    def require(self) -> None:
        if not self.is_authenticated():
            raise PreconditionMissing(
                "gcloud 인증이 되어 있지 않습니다. 'gcloud auth login' 을 먼저 실행하세요."
            )

    def configure_docker(self) -> None:
        self._run(["gcloud", "auth", "configure-docker", "--quiet"])


def project_roles(
    project_id: str,
    member: str,
    runner: Callable[..., RunResult] = run_command,
) -> List[str]:
    """프로젝트 IAM 정책에서 member 에게 부여된 역할 목록 (읽기 전용)."""
    result = runner(
        [
            "gcloud",
            "projects",
            "get-iam-policy",
            project_id,
            "--flatten=bindings[].members",
            f"--filter=bindings.members:{member}",
            "--format=value(bindings.role)",
        ],
        check=False,
    )
    if not result.ok:
        return []
    return [r.strip() for r in result.stdout.splitlines() if r.strip()]

"""
gcp_sql
-------

기존 Cloud SQL 인스턴스 안에 n8n 용 데이터베이스/유저를 준비하는 모듈.
gcloud sql 명령을 래핑하며, 모든 변경 메서드는 호출 전에 보호 목록을 확인한다.
"""

from __future__ import annotations

from typing import Callable, List

from .logging_utils import get_logger
from .safety import ProtectedResources, ResourceKind, ResourceRef
from .subprocess_utils import RunResult, run_command


logger = get_logger(__name__)


class CloudSqlAdmin:
    def __init__(
        self,
        project_id: str,
        protected: ProtectedResources,
        runner: Callable[..., RunResult] = run_command,
    ) -> None:
        self.project_id = project_id
        self.protected = protected
        self._run = runner

    def _project_flag(self) -> str:
        return f"--project={self.project_id}"

    # -- 조회 ------------------------------------------------------------

    def instance_exists(self, instance: str) -> bool:
        result = self._run(
            ["gcloud", "sql", "instances", "describe", instance, self._project_flag(), "--quiet"],
            check=False,
        )
        return result.ok

    def list_databases(self, instance: str) -> List[str]:
        result = self._run(
            [
                "gcloud",
                "sql",
                "databases",
                "list",
                f"--instance={instance}",
                self._project_flag(),
                "--format=value(name)",
            ],
            check=False,
        )
        if not result.ok:
            return []
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def database_exists(self, instance: str, name: str) -> bool:
        result = self._run(
            [
                "gcloud",
                "sql",
                "databases",
                "describe",
                name,
                f"--instance={instance}",
                self._project_flag(),
                "--quiet",
            ],
            check=False,
        )
        return result.ok

    def list_users(self, instance: str) -> List[str]:
        result = self._run(
            [
                "gcloud",
                "sql",
                "users",
                "list",
                f"--instance={instance}",
                self._project_flag(),
                "--format=value(name)",
            ],
            check=False,
        )
        if not result.ok:
            return []
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def user_exists(self, instance: str, name: str) -> bool:
        # 부분 일치가 아니라 정확히 같은 이름만 인정한다.
        return name in self.list_users(instance)

    # -- 변경 ------------------------------------------------------------

    def create_database(self, instance: str, name: str) -> None:
        self.protected.ensure_not_protected(ResourceRef(ResourceKind.DATABASE, name))
        self._run(
            ["gcloud", "sql", "databases", "create", name, f"--instance={instance}", self._project_flag()]
        )
        logger.info("데이터베이스를 생성했습니다: %s", name)

    def delete_database(self, instance: str, name: str) -> None:
        self.protected.ensure_not_protected(ResourceRef(ResourceKind.DATABASE, name))
        self._run(
            [
                "gcloud",
                "sql",
                "databases",
                "delete",
                name,
                f"--instance={instance}",
                self._project_flag(),
                "--quiet",
            ]
        )
        logger.warning("데이터베이스를 삭제했습니다: %s", name)

    def create_user(self, instance: str, name: str, password: str) -> None:
        self.protected.ensure_not_protected(ResourceRef(ResourceKind.USER, name))
        self._run(
            [
                "gcloud",
                "sql",
                "users",
                "create",
                name,
                f"--instance={instance}",
                f"--password={password}",
                self._project_flag(),
            ],
            redact=[password],
        )
        logger.info("유저를 생성했습니다: %s", name)

    def set_password(self, instance: str, name: str, password: str) -> None:
        self.protected.ensure_not_protected(ResourceRef(ResourceKind.USER, name))
        self._run(
            [
                "gcloud",
                "sql",
                "users",
                "set-password",
                name,
                f"--instance={instance}",
                f"--password={password}",
                self._project_flag(),
            ],
            redact=[password],
        )
        logger.info("유저 비밀번호를 변경했습니다: %s", name)

    def grant_privileges(self, instance: str, database: str, user: str) -> None:
        """
        postgres 관리자 계정으로 접속하여 n8n 유저에게 DB/스키마 권한을 준다.
        """
        self.protected.ensure_not_protected(ResourceRef(ResourceKind.DATABASE, database))
        self.protected.ensure_not_protected(ResourceRef(ResourceKind.USER, user))
        sql = "\n".join(
            [
                f'GRANT ALL PRIVILEGES ON DATABASE "{database}" TO "{user}";',
                f"\\c {database}",
                f'GRANT ALL ON SCHEMA public TO "{user}";',
                "\\q",
                "",
            ]
        )
        self._run(
            [
                "gcloud",
                "sql",
                "connect",
                instance,
                "--user=postgres",
                self._project_flag(),
                "--quiet",
            ],
            input_text=sql,
        )
        logger.info("권한을 부여했습니다: %s -> %s", database, user)

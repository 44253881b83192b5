"""
pytest 설정:

로컬 작업 환경에 설치된 다른 버전의 n8n_deploy_kit 패키지가 존재할 때,
`pytest` 실행 시 site-packages 쪽이 먼저 import 되어 테스트가 깨질 수 있다.

테스트는 항상 현재 레포의 소스를 대상으로 해야 하므로, repo root 를 sys.path 최상단에 고정한다.

원격 협력자(Secret Manager, Cloud SQL, Redis, GCS, Cloud Run)는 모두 메모리 기반
가짜 객체로 대체한다.
"""

from __future__ import annotations

import os
import sys
from typing import Dict, List, Optional, Set

import pytest


def pytest_configure() -> None:
    repo_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
    if repo_root not in sys.path:
        sys.path.insert(0, repo_root)


class FakeAuth:
    def __init__(self, authenticated: bool = True) -> None:
        self.authenticated = authenticated
        self.docker_configured = False

    def is_authenticated(self) -> bool:
        return self.authenticated

    def require(self) -> None:
        from n8n_deploy_kit.errors import PreconditionMissing

        if not self.authenticated:
            raise PreconditionMissing("gcloud 인증이 필요합니다.")

    def configure_docker(self) -> None:
        self.docker_configured = True


class FakeSecretStore:
    """
    versions: secret 이름 -> 추가된 값 목록
    fail_on: 이 이름으로 create/add_version 하면 RemoteOperationFailure
    """

    def __init__(self, existing: Optional[Dict[str, List[str]]] = None, protected=None) -> None:  # noqa: ANN001
        self.versions: Dict[str, List[str]] = {k: list(v) for k, v in (existing or {}).items()}
        self.members: Dict[str, Set[str]] = {}
        self.fail_on: Set[str] = set()
        self.race_on: Set[str] = set()
        self.protected = protected
        self.calls: List[tuple] = []

    def _guard(self, name: str) -> None:
        from n8n_deploy_kit.safety import ResourceKind, ResourceRef

        if self.protected is not None:
            self.protected.ensure_not_protected(ResourceRef(ResourceKind.SECRET, name))

    def _maybe_fail(self, name: str) -> None:
        from n8n_deploy_kit.errors import RemoteOperationFailure

        if name in self.fail_on:
            raise RemoteOperationFailure(f"boom: {name}")

    def exists(self, name: str) -> bool:
        return name in self.versions

    def create(self, name: str, content: str) -> None:
        from n8n_deploy_kit.errors import SecretAlreadyExists

        self._guard(name)
        self.calls.append(("create", name))
        self._maybe_fail(name)
        if name in self.race_on:
            # 다른 실행이 exists 확인 직후 먼저 생성한 상황
            self.versions[name] = ["other-run"]
            self.race_on.discard(name)
        if name in self.versions:
            raise SecretAlreadyExists(name)
        self.versions[name] = [content]

    def add_version(self, name: str, content: str) -> None:
        self._guard(name)
        self.calls.append(("add_version", name))
        self._maybe_fail(name)
        self.versions.setdefault(name, []).append(content)

    def grant_access(self, name: str, principal: str, role: str) -> bool:
        self._guard(name)
        self.calls.append(("grant_access", name))
        members = self.members.setdefault(name, set())
        if principal in members:
            return False
        members.add(principal)
        return True

    def list(self, prefix: str = "") -> List[str]:
        return sorted(n for n in self.versions if n.startswith(prefix))

    def latest(self, name: str) -> str:
        return self.versions[name][-1]


class FakeSql:
    def __init__(
        self,
        instances: Optional[Set[str]] = None,
        databases: Optional[Set[str]] = None,
        users: Optional[Set[str]] = None,
    ) -> None:
        self.instances = set(instances or ())
        self.databases = set(databases or ())
        self.users = set(users or ())
        self.passwords: Dict[str, str] = {}
        self.calls: List[tuple] = []

    def instance_exists(self, instance: str) -> bool:
        return instance in self.instances

    def list_databases(self, instance: str) -> List[str]:
        return sorted(self.databases) if instance in self.instances else []

    def database_exists(self, instance: str, name: str) -> bool:
        return name in self.list_databases(instance)

    def list_users(self, instance: str) -> List[str]:
        return sorted(self.users) if instance in self.instances else []

    def user_exists(self, instance: str, name: str) -> bool:
        return name in self.list_users(instance)

    def create_database(self, instance: str, name: str) -> None:
        self.calls.append(("create_database", name))
        self.databases.add(name)

    def delete_database(self, instance: str, name: str) -> None:
        self.calls.append(("delete_database", name))
        self.databases.discard(name)

    def create_user(self, instance: str, name: str, password: str) -> None:
        self.calls.append(("create_user", name))
        self.users.add(name)
        self.passwords[name] = password

    def set_password(self, instance: str, name: str, password: str) -> None:
        self.calls.append(("set_password", name))
        self.passwords[name] = password

    def grant_privileges(self, instance: str, database: str, user: str) -> None:
        self.calls.append(("grant_privileges", database, user))


class FakeRedis:
    def __init__(self, state: Optional[str] = "READY") -> None:
        self.state = state

    def describe(self, instance: str, region: str):  # noqa: ANN201
        from n8n_deploy_kit.gcp_redis import RedisInstanceInfo

        if self.state is None:
            return None
        return RedisInstanceInfo(state=self.state, host="10.0.0.3", port=6379)


class FakeBuckets:
    def __init__(self, buckets: Optional[Set[str]] = None) -> None:
        self.buckets = set(buckets or ())

    def bucket_exists(self, name: str) -> bool:
        return name in self.buckets


class FakeCloudRun:
    def __init__(self, services: Optional[Set[str]] = None, images: Optional[Set[str]] = None) -> None:
        self.services = set(services or ())
        self.images = set(images or ())
        self.deployed: List = []

    def image_exists(self, ref: str) -> bool:
        return ref in self.images

    def image_digest(self, ref: str) -> str:
        return "sha256:abc" if ref in self.images else ""

    def list_services(self, region: str) -> List[str]:
        return sorted(self.services)

    def service_exists(self, name: str, region: str) -> bool:
        return name in self.services

    def deploy(self, spec):  # noqa: ANN001, ANN201
        from n8n_deploy_kit.gcp_cloud_run import DeployResult, ServiceStatus

        self.deployed.append(spec)
        self.services.add(spec.name)
        url = f"https://{spec.name}-xyz.a.run.app"
        return DeployResult(url=url, status=ServiceStatus(url=url, ready=False, raw_status="Unknown"))

    def wait_until_ready(self, name: str, region: str, *, attempts: int, interval: float):  # noqa: ANN201
        from n8n_deploy_kit.gcp_cloud_run import ServiceStatus

        return ServiceStatus(url=f"https://{name}-xyz.a.run.app", ready=True, raw_status="True")


class FakePrompter:
    """label 에 포함된 키워드로 답을 고른다. 호출 기록을 남긴다."""

    def __init__(self, answers: Optional[Dict[str, str]] = None) -> None:
        self.answers = answers or {}
        self.asked: List[str] = []

    def prompt(self, label: str, *, secret: bool = True, confirm: bool = False) -> str:
        self.asked.append(label)
        for key, value in self.answers.items():
            if key in label:
                return value
        return ""


class FakeConfirmer:
    def __init__(self, *answers: bool) -> None:
        self.answers = list(answers)
        self.questions: List[str] = []

    def confirm(self, question: str, *, default: bool = False) -> bool:
        self.questions.append(question)
        if not self.answers:
            return default
        return self.answers.pop(0)


@pytest.fixture
def cfg():
    from n8n_deploy_kit.config import ProjectConfig

    return ProjectConfig(
        gcp_project="test-project",
        gcp_region="asia-northeast3",
        service_account="n8n-sa@test-project.iam.gserviceaccount.com",
        cloud_sql_instance="test-project:asia-northeast3:shared-pg",
        redis_instance="shared-redis",
        redis_host="10.0.0.3",
        storage_bucket="test-project-n8n",
    )


@pytest.fixture
def backends(cfg):  # noqa: ANN001
    """준비가 모두 끝난 상태의 기존 인프라 (docmost 가 이미 사용 중)."""
    from n8n_deploy_kit.backends import Backends
    from n8n_deploy_kit.safety import ProtectedResources

    return Backends(
        auth=FakeAuth(),
        secrets=FakeSecretStore(
            existing={"docmost-db-password": ["x"]},
            protected=ProtectedResources.from_config(cfg),
        ),
        sql=FakeSql(
            instances={"shared-pg"},
            databases={"docmost", "postgres"},
            users={"docmost", "postgres"},
        ),
        redis=FakeRedis(),
        buckets=FakeBuckets({"test-project-n8n"}),
        cloud_run=FakeCloudRun(services={"docmost"}),
        roles=lambda member: ["roles/secretmanager.secretAccessor", "roles/cloudsql.client"],
        enable_api=lambda api: None,
    )

"""
gcp_secrets
-----------

Secret Manager 를 Secret 저장소로 사용하는 구현.
prefix 로 시작하지 않는 Secret 에는 어떤 변경 호출도 하지 않는다.
API 호출 실패(권한 없음 등)는 RemoteOperationFailure 로 바꿔 올린다.
"""

from __future__ import annotations

from typing import List, Optional

from google.api_core.exceptions import AlreadyExists, GoogleAPICallError, NotFound
from google.cloud import secretmanager

from .errors import RemoteOperationFailure, SecretAlreadyExists
from .logging_utils import get_logger
from .safety import ProtectedResources, ResourceKind, ResourceRef


logger = get_logger(__name__)


class SecretManagerStore:
    def __init__(
        self,
        project_id: str,
        protected: ProtectedResources,
        client: Optional[secretmanager.SecretManagerServiceClient] = None,
    ) -> None:
        self.project_id = project_id
        self.protected = protected
        self._client = client

    @property
    def client(self) -> secretmanager.SecretManagerServiceClient:
        if self._client is None:
            self._client = secretmanager.SecretManagerServiceClient()
        return self._client

    @property
    def parent(self) -> str:
        return f"projects/{self.project_id}"

    def _path(self, name: str) -> str:
        return f"{self.parent}/secrets/{name}"

    def _guard(self, name: str) -> None:
        self.protected.ensure_not_protected(ResourceRef(ResourceKind.SECRET, name))

    def exists(self, name: str) -> bool:
        try:
            self.client.get_secret(name=self._path(name))
            return True
        except NotFound:
            return False
        except GoogleAPICallError as e:
            raise RemoteOperationFailure(f"Secret 조회 실패: {name}: {e}") from e

    def create(self, name: str, content: str) -> None:
        """초기 버전과 함께 Secret 을 생성한다."""
        self._guard(name)
        try:
            self.client.create_secret(
                parent=self.parent,
                secret_id=name,
                secret={
                    "replication": {"automatic": {}},
                },
            )
        except AlreadyExists as e:
            raise SecretAlreadyExists(name) from e
        except GoogleAPICallError as e:
            raise RemoteOperationFailure(f"Secret 생성 실패: {name}: {e}") from e
        self._add_version(name, content)

    def add_version(self, name: str, content: str) -> None:
        self._guard(name)
        self._add_version(name, content)

    def _add_version(self, name: str, content: str) -> None:
        try:
            self.client.add_secret_version(
                parent=self._path(name),
                payload={"data": content.encode("utf-8")},
            )
        except GoogleAPICallError as e:
            raise RemoteOperationFailure(f"Secret 버전 추가 실패: {name}: {e}") from e

    def grant_access(self, name: str, principal: str, role: str) -> bool:
        """
        Secret 단위 IAM 바인딩에 member 를 추가한다. 기존 member 는 제거하지 않는다.
        이미 부여되어 있으면 False.
        """
        self._guard(name)
        resource = self._path(name)
        member = principal if ":" in principal else f"serviceAccount:{principal}"

        try:
            policy = self.client.get_iam_policy(request={"resource": resource})
        except GoogleAPICallError as e:
            raise RemoteOperationFailure(f"IAM 정책 조회 실패: {name}: {e}") from e

        binding = None
        for b in policy.bindings:
            if b.role == role:
                binding = b
                break

        if binding is not None and member in binding.members:
            logger.debug("이미 권한이 있습니다: %s %s %s", resource, role, member)
            return False

        if binding is None:
            binding = policy.bindings.add()
            binding.role = role
        binding.members.append(member)

        try:
            self.client.set_iam_policy(request={"resource": resource, "policy": policy})
        except GoogleAPICallError as e:
            raise RemoteOperationFailure(f"IAM 정책 변경 실패: {name}: {e}") from e
        logger.info("Secret 접근 권한 부여: %s -> %s (%s)", resource, member, role)
        return True

    def list(self, prefix: str = "") -> List[str]:
        names: List[str] = []
        try:
            for secret in self.client.list_secrets(request={"parent": self.parent}):
                short = secret.name.rsplit("/", 1)[-1]
                if short.startswith(prefix):
                    names.append(short)
        except GoogleAPICallError as e:
            raise RemoteOperationFailure(f"Secret 목록 조회 실패: {e}") from e
        return sorted(names)

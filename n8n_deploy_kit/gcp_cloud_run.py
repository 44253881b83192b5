"""
gcp_cloud_run
-------------

Cloud Run 서비스 배포/상태 조회 및 컨테이너 이미지 확인을 담당하는 모듈.
"""

from __future__ import annotations

import os
import tempfile
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from .errors import PreconditionMissing
from .logging_utils import get_logger
from .safety import ProtectedResources, ResourceKind, ResourceRef
from .subprocess_utils import RunResult, run_command


logger = get_logger(__name__)


@dataclass(frozen=True)
class ServiceSpec:
    name: str
    region: str
    yaml_path: str
    image: str
    # YAML 안에서 image 로 치환할 기존 값 (예: gcr.io/p/n8n:latest)
    image_placeholder: Optional[str] = None


@dataclass(frozen=True)
class ServiceStatus:
    url: str
    ready: Optional[bool]
    raw_status: str = ""


@dataclass(frozen=True)
class DeployResult:
    url: str
    status: ServiceStatus


class CloudRunPlatform:
    def __init__(
        self,
        project_id: str,
        protected: ProtectedResources,
        runner: Callable[..., RunResult] = run_command,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.project_id = project_id
        self.protected = protected
        self._run = runner
        self._sleep = sleep

    # -- 이미지 ----------------------------------------------------------

    def image_exists(self, ref: str) -> bool:
        result = self._run(
            ["gcloud", "container", "images", "describe", ref, f"--project={self.project_id}"],
            check=False,
        )
        return result.ok

    def image_digest(self, ref: str) -> str:
        result = self._run(
            [
                "gcloud",
                "container",
                "images",
                "describe",
                ref,
                f"--project={self.project_id}",
                "--format=value(image_summary.fully_qualified_digest)",
            ],
            check=False,
        )
        return result.stdout.strip() if result.ok else ""

    # -- 서비스 ----------------------------------------------------------

    def list_services(self, region: str) -> List[str]:
        result = self._run(
            [
                "gcloud",
                "run",
                "services",
                "list",
                f"--region={region}",
                f"--project={self.project_id}",
                "--format=value(metadata.name)",
            ],
            check=False,
        )
        if not result.ok:
            return []
        return [s.strip() for s in result.stdout.splitlines() if s.strip()]

    def service_exists(self, name: str, region: str) -> bool:
        return name in self.list_services(region)

    def describe(self, name: str, region: str) -> ServiceStatus:
        result = self._run(
            [
                "gcloud",
                "run",
                "services",
                "describe",
                name,
                f"--region={region}",
                f"--project={self.project_id}",
                "--format=value(status.url,status.conditions[0].status)",
            ],
            check=False,
        )
        if not result.ok:
            return ServiceStatus(url="", ready=None)

        parts = result.stdout.strip().split()
        url = parts[0] if parts else ""
        raw = parts[1] if len(parts) > 1 else ""
        ready = {"True": True, "False": False}.get(raw)
        return ServiceStatus(url=url, ready=ready, raw_status=raw)

    def deploy(self, spec: ServiceSpec) -> DeployResult:
        """
        cloudrun.yaml 을 임시 파일로 복사하고 image 를 치환한 뒤
        gcloud run services replace 로 배포한다. 원본 YAML 은 수정하지 않는다.
        """
        self.protected.ensure_not_protected(ResourceRef(ResourceKind.SERVICE, spec.name))

        if not os.path.isfile(spec.yaml_path):
            raise PreconditionMissing(f"cloudrun.yaml 을 찾을 수 없습니다: {spec.yaml_path}")

        with open(spec.yaml_path, "r", encoding="utf-8") as f:
            content = f.read()
        if spec.image_placeholder and spec.image_placeholder != spec.image:
            logger.info("YAML image 치환: %s -> %s", spec.image_placeholder, spec.image)
            content = content.replace(
                f"image: {spec.image_placeholder}", f"image: {spec.image}"
            )

        fd, tmp_path = tempfile.mkstemp(prefix="cloudrun-", suffix=".yaml")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as tmp:
                tmp.write(content)
            self._run(
                [
                    "gcloud",
                    "run",
                    "services",
                    "replace",
                    tmp_path,
                    f"--region={spec.region}",
                    f"--project={self.project_id}",
                ],
                stream_output=True,
            )
        finally:
            os.unlink(tmp_path)

        status = self.describe(spec.name, spec.region)
        return DeployResult(url=status.url, status=status)

    def wait_until_ready(
        self,
        name: str,
        region: str,
        *,
        attempts: int = 12,
        interval: float = 5.0,
    ) -> ServiceStatus:
        """고정 간격 폴링. attempts 안에 Ready 가 아니면 마지막 상태를 돌려준다."""
        status = ServiceStatus(url="", ready=None)
        for i in range(max(attempts, 1)):
            self._sleep(interval)
            status = self.describe(name, region)
            logger.info("서비스 상태 확인 (%d/%d): %s", i + 1, attempts, status.raw_status or "UNKNOWN")
            if status.ready:
                break
        return status


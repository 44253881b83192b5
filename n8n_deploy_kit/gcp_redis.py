"""
gcp_redis
---------

기존 Memorystore(Redis) 인스턴스 상태 조회. 설정은 변경하지 않는다.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Callable, Optional

from .logging_utils import get_logger
from .subprocess_utils import RunResult, run_command


logger = get_logger(__name__)


@dataclass(frozen=True)
class RedisInstanceInfo:
    state: str
    host: str
    port: int

    @property
    def ready(self) -> bool:
        return self.state == "READY"


class MemorystoreInspector:
    def __init__(self, project_id: str, runner: Callable[..., RunResult] = run_command) -> None:
        self.project_id = project_id
        self._run = runner

    def describe(self, instance: str, region: str) -> Optional[RedisInstanceInfo]:
        """인스턴스가 없으면 None."""
        result = self._run(
            [
                "gcloud",
                "redis",
                "instances",
                "describe",
                instance,
                f"--region={region}",
                f"--project={self.project_id}",
                "--format=json",
            ],
            check=False,
        )
        if not result.ok:
            return None

        try:
            data = json.loads(result.stdout or "{}")
        except json.JSONDecodeError:
            logger.warning("Redis describe 결과를 해석할 수 없습니다: %s", instance)
            return RedisInstanceInfo(state="UNKNOWN", host="", port=0)

        return RedisInstanceInfo(
            state=str(data.get("state", "UNKNOWN")),
            host=str(data.get("host", "")),
            port=int(data.get("port", 0) or 0),
        )

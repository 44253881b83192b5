"""
backends
--------

워크플로우가 사용하는 원격 협력자(인증, Secret, SQL, Redis, GCS, Cloud Run)를
하나로 묶는다. 테스트에서는 같은 모양의 가짜 객체로 교체한다.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import partial
from typing import Any, Callable, List

from .config import ProjectConfig
from .gcp_auth import GcloudAuth, project_roles
from .gcp_cloud_run import CloudRunPlatform
from .gcp_gcs import BucketInspector
from .gcp_project import ensure_api_enabled
from .gcp_redis import MemorystoreInspector
from .gcp_secrets import SecretManagerStore
from .gcp_sql import CloudSqlAdmin
from .safety import ProtectedResources, ResourceKind, ResourceRef


@dataclass
class Backends:
    auth: Any
    secrets: Any
    sql: Any
    redis: Any
    buckets: Any
    cloud_run: Any
    roles: Callable[[str], List[str]]
    enable_api: Callable[[str], None]


def default_backends(cfg: ProjectConfig) -> Backends:
    protected = ProtectedResources.from_config(cfg)
    return Backends(
        auth=GcloudAuth(),
        secrets=SecretManagerStore(cfg.gcp_project, protected),
        sql=CloudSqlAdmin(cfg.gcp_project, protected),
        redis=MemorystoreInspector(cfg.gcp_project),
        buckets=BucketInspector(cfg.gcp_project),
        cloud_run=CloudRunPlatform(cfg.gcp_project, protected),
        roles=partial(project_roles, cfg.gcp_project),
        enable_api=partial(ensure_api_enabled, cfg),
    )


class GcpInventory:
    """
    Safety Gate 용 읽기 전용 조회 어댑터. 매 호출마다 원격 상태를 새로 읽는다.
    """

    def __init__(self, cfg: ProjectConfig, backends: Backends) -> None:
        self.cfg = cfg
        self.b = backends

    def exists(self, ref: ResourceRef) -> bool:
        cfg = self.cfg
        kind = ref.kind
        if kind is ResourceKind.SQL_INSTANCE:
            return self.b.sql.instance_exists(ref.name)
        if kind is ResourceKind.DATABASE:
            return ref.name in self.b.sql.list_databases(cfg.sql_instance_name)
        if kind is ResourceKind.USER:
            return self.b.sql.user_exists(cfg.sql_instance_name, ref.name)
        if kind is ResourceKind.REDIS_INSTANCE:
            return self.b.redis.describe(ref.name, cfg.gcp_region) is not None
        if kind is ResourceKind.BUCKET:
            return self.b.buckets.bucket_exists(ref.name)
        if kind is ResourceKind.SECRET:
            return self.b.secrets.exists(ref.name)
        if kind is ResourceKind.SERVICE:
            return self.b.cloud_run.service_exists(ref.name, cfg.gcp_region)
        if kind is ResourceKind.IMAGE:
            return self.b.cloud_run.image_exists(ref.name)
        raise ValueError(f"알 수 없는 리소스 종류입니다: {kind}")

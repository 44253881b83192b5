"""
gcp_gcs
-------

기존 GCS 버킷 존재 여부 확인. n8n 은 버킷 안에 자체 경로를 사용하므로
버킷 설정은 변경하지 않는다.
"""

from __future__ import annotations

from typing import Optional

from google.cloud import storage

from .logging_utils import get_logger


logger = get_logger(__name__)


class BucketInspector:
    def __init__(self, project_id: str, client: Optional[storage.Client] = None) -> None:
        self.project_id = project_id
        self._client = client

    @property
    def client(self) -> storage.Client:
        if self._client is None:
            self._client = storage.Client(project=self.project_id)
        return self._client

    def bucket_exists(self, name: str) -> bool:
        bucket = self.client.bucket(name)
        exists = bucket.exists()
        logger.debug("GCS 버킷 확인: %s exists=%s", name, exists)
        return bool(exists)

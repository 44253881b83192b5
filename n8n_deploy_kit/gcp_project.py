"""
gcp_project
-----------

Secret 설정 전에 필요한 API 가 활성화되어 있는지 확인/enable 하는 모듈.
"""

from __future__ import annotations

from typing import Callable

from .config import ProjectConfig
from .logging_utils import get_logger
from .subprocess_utils import RunResult, run_command


logger = get_logger(__name__)


SECRET_MANAGER_API = "secretmanager.googleapis.com"


def api_enabled(cfg: ProjectConfig, api: str, runner: Callable[..., RunResult] = run_command) -> bool:
    result = runner(
        [
            "gcloud",
            "services",
            "list",
            "--enabled",
            f"--project={cfg.gcp_project}",
            f"--filter=name:{api}",
            "--format=value(config.name)",
            "--quiet",
        ],
        check=False,
    )
    return result.ok and api in result.stdout


def ensure_api_enabled(cfg: ProjectConfig, api: str, runner: Callable[..., RunResult] = run_command) -> None:
    """
    API 가 꺼져 있으면 enable 한다. 이미 켜져 있으면 아무것도 하지 않는다.
    """
    if api_enabled(cfg, api, runner):
        logger.info("API 활성화 확인: %s", api)
        return

    logger.info("API 를 활성화합니다: %s", api)
    runner(
        [
            "gcloud",
            "services",
            "enable",
            api,
            f"--project={cfg.gcp_project}",
            "--quiet",
        ]
    )

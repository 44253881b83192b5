"""
image_build
-----------

n8n 애플리케이션 빌드(pnpm) 와 도커 이미지 빌드/푸시를 담당하는 모듈.
빌드 자체는 외부 도구에 맡기고, 여기서는 호출 순서와 결과물 확인만 한다.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Callable, List

from .config import ProjectConfig
from .errors import PreconditionMissing
from .logging_utils import get_logger
from .subprocess_utils import RunResult, run_command


logger = get_logger(__name__)


REQUIRED_NODE_VERSION = (22, 16)
COMPILED_DIR = "compiled"


@dataclass(frozen=True)
class ImageBuildResult:
    image: str
    tags: List[str]
    git_commit: str
    version: str


def _node_version(runner: Callable[..., RunResult]) -> tuple[int, int] | None:
    result = runner(["node", "--version"], check=False)
    if not result.ok:
        return None
    raw = result.stdout.strip().lstrip("v")
    try:
        major, minor = raw.split(".")[:2]
        return int(major), int(minor)
    except ValueError:
        return None


def build_application(repo_root: str, runner: Callable[..., RunResult] = run_command) -> str:
    """
    pnpm build:deploy 를 실행하고 compiled 디렉토리 경로를 돌려준다.
    """
    if not os.path.isfile(os.path.join(repo_root, "package.json")):
        raise PreconditionMissing(
            f"n8n 레포 루트가 아닙니다. package.json 을 찾을 수 없습니다: {repo_root}"
        )

    version = _node_version(runner)
    if version is not None and version < REQUIRED_NODE_VERSION:
        logger.warning(
            "Node.js %d.%d 은(는) 권장 버전 %d.%d 보다 낮습니다. 빌드가 실패할 수 있습니다.",
            *version,
            *REQUIRED_NODE_VERSION,
        )

    logger.info("n8n 애플리케이션 빌드를 시작합니다. (5-10분 소요)")
    runner(["pnpm", "build:deploy"], cwd=repo_root, timeout=3600.0, stream_output=True)

    compiled = os.path.join(repo_root, COMPILED_DIR)
    if not os.path.isdir(compiled):
        raise PreconditionMissing(f"빌드 결과 디렉토리가 없습니다: {compiled}")
    logger.info("빌드 완료: %s", compiled)
    return compiled


def _git_commit(repo_root: str, runner: Callable[..., RunResult]) -> str:
    result = runner(["git", "rev-parse", "--short", "HEAD"], cwd=repo_root, check=False)
    return result.stdout.strip() if result.ok and result.stdout.strip() else "unknown"


def _package_version(repo_root: str) -> str:
    path = os.path.join(repo_root, "package.json")
    try:
        with open(path, "r", encoding="utf-8") as f:
            return str(json.load(f).get("version") or "snapshot")
    except (OSError, ValueError):
        return "snapshot"


def build_and_push_image(
    cfg: ProjectConfig,
    runner: Callable[..., RunResult] = run_command,
    *,
    require_compiled: bool = True,
) -> ImageBuildResult:
    """
    도커 이미지를 tag/commit/version 세 가지 태그로 빌드하고 푸시한다.
    IMAGE_TAG 가 latest 이면 latest 만 푸시한다.
    """
    repo_root = cfg.repo_root
    if require_compiled and not os.path.isdir(os.path.join(repo_root, COMPILED_DIR)):
        raise PreconditionMissing(
            "애플리케이션이 빌드되지 않았습니다. 'compiled' 디렉토리가 없습니다. build 명령을 먼저 실행하세요."
        )

    commit = _git_commit(repo_root, runner)
    version = _package_version(repo_root)

    image = cfg.image_ref
    tags = [image, f"{cfg.image_repository}:{commit}", f"{cfg.image_repository}:{version}"]

    cmd = ["docker", "build", "--file", cfg.dockerfile]
    for tag in tags:
        cmd += ["--tag", tag]
    cmd += [
        "--build-arg",
        f"N8N_VERSION={version}",
        "--build-arg",
        "N8N_RELEASE_TYPE=production",
        ".",
    ]
    runner(cmd, cwd=repo_root, timeout=3600.0, stream_output=True)

    to_push = [image] if cfg.image_tag == "latest" else tags
    for tag in to_push:
        runner(["docker", "push", tag], timeout=3600.0, stream_output=True)

    logger.info("이미지 빌드/푸시 완료: %s (commit=%s version=%s)", image, commit, version)
    return ImageBuildResult(image=image, tags=to_push, git_commit=commit, version=version)

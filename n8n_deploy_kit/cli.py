import os
import sys
from typing import Callable, Tuple, Union

import click

from .backends import default_backends
from .config import ProjectConfig, load_env_files
from .errors import DeployKitError, OperationAborted
from .logging_utils import get_logger, setup_logging
from .orchestrator import (
    RunContext,
    build,
    plan_all,
    push_and_deploy,
    safety_check,
    setup_database,
    setup_secrets,
    verify_all,
)
from .registry import build_default_registry
from .resolver import AutoConfirmer, ClickConfirmer, ClickPrompter, NonInteractivePrompter


logger = get_logger(__name__)


@click.group()
@click.option(
    "-C",
    "--chdir",
    "chdir",
    type=click.Path(file_okay=False, dir_okay=True, exists=True),
    default=".",
    help="작업 디렉토리 (기본: 현재 디렉토리). .env/.env.gcp/.env.secrets 를 여기서 읽습니다.",
)
@click.option(
    "-v",
    "--verbose",
    count=True,
    help="로그 레벨을 DEBUG로 올립니다. (-v 가 많을수록 더 자세한 로그)",
)
@click.pass_context
def main(ctx: click.Context, chdir: str, verbose: int) -> None:
    """n8n 을 기존 GCP 인프라(Cloud SQL / Memorystore / GCS) 위에 배포하는 CLI"""
    setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["chdir"] = chdir
    ctx.obj["verbose"] = verbose


def _load_config_from_ctx(ctx: click.Context) -> ProjectConfig:
    base_dir: str = ctx.obj["chdir"]
    load_env_files(base_dir)
    cfg = ProjectConfig.from_env()
    logger.debug("Config loaded: project=%s region=%s", cfg.gcp_project, cfg.gcp_region)
    return cfg


def _build_context(ctx: click.Context, *, yes: bool = False, no_input: bool = False) -> RunContext:
    """
    설정 로드 후 한 번의 실행에서 공유할 RunContext 를 만든다.
    테스트에서는 ctx.obj["backends_factory"] 로 원격 협력자를 교체한다.
    """
    try:
        cfg = _load_config_from_ctx(ctx)
    except Exception as e:  # noqa: BLE001
        click.echo(f"[ERROR] 설정 로드 실패: {e}", err=True)
        sys.exit(1)

    factory = ctx.obj.get("backends_factory", default_backends)
    confirmer = AutoConfirmer(True) if (yes or cfg.skip_confirm) else ClickConfirmer()
    # 데이터베이스 재생성 / 암호화 키 교체는 --yes 로 대신 답하지 않는다.
    destructive_confirmer = AutoConfirmer(False) if no_input else ClickConfirmer()
    prompter = NonInteractivePrompter() if no_input else ClickPrompter()

    return RunContext(
        cfg=cfg,
        registry=build_default_registry(cfg),
        backends=factory(cfg),
        # 환경변수는 실행 시작 시점에 한 번만 스냅샷한다.
        overrides=dict(os.environ),
        prompter=prompter,
        confirmer=confirmer,
        destructive_confirmer=destructive_confirmer,
    )


def _execute(label: str, fn: Callable[[], Union[str, Tuple[str, bool]]]) -> None:
    """
    워크플로우 실행 결과를 출력하고 종료 코드를 결정한다.

    - 운영자가 중단(no) 한 경우는 오류가 아니므로 exit 0
    - DeployKitError / 설정 오류는 [ERROR] 메시지 후 exit 1
    - (summary, has_failures) 에서 has_failures 가 참이면 exit 1
    """
    try:
        result = fn()
    except OperationAborted as e:
        click.echo(f"[ABORTED] {e}")
        return
    except (DeployKitError, ValueError) as e:
        logger.debug("%s 중 오류 발생", label, exc_info=True)
        click.echo(f"[ERROR] {label} 실패: {e}", err=True)
        sys.exit(1)

    if isinstance(result, tuple):
        summary, has_failures = result
    else:
        summary, has_failures = result, False

    click.echo(summary)
    if has_failures:
        sys.exit(1)


@main.command()
@click.pass_context
def plan(ctx: click.Context) -> None:
    """현재 설정과 생성될 Secret 목록을 요약 (원격 호출/입력 없음)"""
    run = _build_context(ctx, no_input=True)
    _execute("plan", lambda: plan_all(run))


@main.command(name="safety-check")
@click.pass_context
def safety_check_cmd(ctx: click.Context) -> None:
    """
    기존 인프라를 손상시키지 않는지 점검한다. (리소스 변경 없음)
    """
    run = _build_context(ctx, no_input=True)
    _execute("안전 점검", lambda: safety_check(run))


@main.command(name="setup-database")
@click.option("-y", "--yes", is_flag=True, help="확인 질문에 yes 로 답합니다. 데이터베이스 재생성 질문은 제외. (SKIP_CONFIRM=true 와 동일)")
@click.pass_context
def setup_database_cmd(ctx: click.Context, yes: bool) -> None:
    """기존 Cloud SQL 인스턴스에 n8n 데이터베이스/유저를 생성"""
    run = _build_context(ctx, yes=yes)
    _execute("데이터베이스 설정", lambda: setup_database(run))


@main.command(name="setup-secrets")
@click.option("-y", "--yes", is_flag=True, help="기존 n8n Secret 에 새 버전 추가를 확인 없이 진행합니다. (SKIP_CONFIRM=true 와 동일)")
@click.option(
    "--no-input",
    is_flag=True,
    help="값을 묻지 않습니다. 입력이 필요한 값은 환경변수로 제공해야 하며, 기존 암호화 키는 유지됩니다.",
)
@click.pass_context
def setup_secrets_cmd(ctx: click.Context, yes: bool, no_input: bool) -> None:
    """n8n 설정 값을 prefix 가 붙은 Secret Manager Secret 으로 생성/업데이트"""
    run = _build_context(ctx, yes=yes, no_input=no_input)
    _execute("Secret 설정", lambda: setup_secrets(run))


@main.command()
@click.pass_context
def verify(ctx: click.Context) -> None:
    """
    배포 전에 인프라 준비 상태를 점검한다. (실제 리소스 생성/변경은 하지 않는다)
    """
    run = _build_context(ctx, no_input=True)
    _execute("인프라 검증", lambda: verify_all(run))


@main.command(name="build")
@click.pass_context
def build_cmd(ctx: click.Context) -> None:
    """pnpm build:deploy 로 n8n 애플리케이션을 빌드"""
    run = _build_context(ctx, no_input=True)
    _execute("빌드", lambda: build(run))


@main.command(name="push-and-deploy")
@click.option("-y", "--yes", is_flag=True, help="모든 확인 질문에 yes 로 답합니다. (SKIP_CONFIRM=true 와 동일)")
@click.option(
    "--skip-build-check",
    is_flag=True,
    help="compiled 디렉토리 확인을 건너뜁니다.",
)
@click.pass_context
def push_and_deploy_cmd(ctx: click.Context, yes: bool, skip_build_check: bool) -> None:
    """도커 이미지를 빌드/푸시하고 Cloud Run 에 배포"""
    run = _build_context(ctx, yes=yes, no_input=True)
    _execute("배포", lambda: push_and_deploy(run, skip_build_check=skip_build_check))

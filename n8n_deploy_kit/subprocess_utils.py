from __future__ import annotations

import subprocess
from dataclasses import dataclass
from textwrap import shorten
from typing import Mapping, Sequence

from .errors import CommandError, PreconditionMissing
from .logging_utils import get_logger


logger = get_logger(__name__)


@dataclass(frozen=True)
class RunResult:
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def _describe(cmd: Sequence[str], redact: Sequence[str] = ()) -> str:
    text = " ".join(cmd)
    for value in redact:
        if value:
            text = text.replace(value, "****")
    return text


def run_command(
    cmd: Sequence[str],
    *,
    cwd: str | None = None,
    env: Mapping[str, str] | None = None,
    timeout: float | None = 900.0,
    check: bool = True,
    input_text: str | None = None,
    stream_output: bool = False,
    redact: Sequence[str] = (),
) -> RunResult:
    """
    subprocess 실행 공통 유틸.

    - stream_output=False: stdout/stderr 캡처, 실패 시 요약 포함
    - stream_output=True : 출력을 실시간으로 터미널에 흘린다 (docker build/pnpm 등 오래 걸리는 명령)
    - check=False 이면 0 이 아닌 종료 코드도 RunResult 로 돌려준다 (존재 여부 확인용)
    - redact 에 준 문자열(비밀번호 등)은 로그/에러 메시지에서 가린다
    """
    described = _describe(cmd, redact)
    logger.info("명령 실행: %s", described)

    try:
        if stream_output:
            proc = subprocess.run(  # noqa: S603
                list(cmd),
                cwd=cwd,
                env=dict(env) if env is not None else None,
                input=input_text,
                stdout=None,
                stderr=None,
                text=True,
                timeout=timeout,
            )
            result = RunResult(returncode=proc.returncode, stdout="", stderr="")
        else:
            proc = subprocess.run(  # noqa: S603
                list(cmd),
                cwd=cwd,
                env=dict(env) if env is not None else None,
                input=input_text,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
            result = RunResult(
                returncode=proc.returncode,
                stdout=proc.stdout or "",
                stderr=proc.stderr or "",
            )
            if result.stdout:
                logger.debug("명령 stdout: %s", shorten(result.stdout.strip(), width=2000))
            if result.stderr:
                logger.debug("명령 stderr: %s", shorten(result.stderr.strip(), width=2000))
    except FileNotFoundError as e:
        raise PreconditionMissing(
            f"필요한 명령을 찾을 수 없습니다: {cmd[0]} (gcloud/docker 가 설치되어 있는지 확인하세요)"
        ) from e
    except subprocess.TimeoutExpired as e:
        raise CommandError(
            f"명령 실행이 {timeout}초 안에 끝나지 않았습니다: {described}"
        ) from e

    if check and not result.ok:
        stdout = result.stdout.strip()
        stderr = result.stderr.strip()
        detail = ""
        if stderr:
            detail = "\nstderr:\n" + shorten(stderr, width=2000)
        elif stdout:
            detail = "\nstdout:\n" + shorten(stdout, width=2000)
        raise CommandError(
            f"명령 실행 실패: {described} (exit={result.returncode}){detail}",
            returncode=result.returncode,
            stdout=result.stdout,
            stderr=result.stderr,
        )

    return result

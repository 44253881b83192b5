"""
resolver
--------

레지스트리 정의 순서대로 각 변수의 실제 값을 결정한다.

우선순위: 환경변수(override) > 규칙(고정값/파생/환경/입력/생성).
입력이나 생성으로 얻은 값은 같은 실행 안에서 캐시되어 다시 묻지 않는다.
"""

from __future__ import annotations

import base64
import secrets
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Protocol

import click

from .errors import EmptyRequiredValue
from .logging_utils import get_logger, mask_secret
from .registry import (
    ConfigVariable,
    Derived,
    Environment,
    Generated,
    Interactive,
    Registry,
    Static,
)


logger = get_logger(__name__)


class Origin(str, Enum):
    DEFAULT = "default"
    OVERRIDE = "override"
    PROMPTED = "prompted"
    GENERATED = "generated"


@dataclass(frozen=True)
class ResolvedValue:
    name: str
    value: str
    origin: Origin

    def __repr__(self) -> str:
        # 값 자체는 로그/예외 메시지에 남기지 않는다.
        return f"ResolvedValue(name={self.name!r}, origin={self.origin.value!r})"


class Prompter(Protocol):
    def prompt(self, label: str, *, secret: bool = True, confirm: bool = False) -> str:
        ...


class Confirmer(Protocol):
    def confirm(self, question: str, *, default: bool = False) -> bool:
        ...


def generate_encryption_key() -> str:
    """openssl rand -base64 32 와 같은 형태의 키."""
    return base64.b64encode(secrets.token_bytes(32)).decode("ascii")


class ClickPrompter:
    """터미널에서 값을 입력받는다. 입력이 올 때까지 블록된다."""

    def prompt(self, label: str, *, secret: bool = True, confirm: bool = False) -> str:
        value = click.prompt(
            label,
            default="",
            show_default=False,
            hide_input=secret,
            confirmation_prompt=confirm,
        )
        return str(value).strip()


class NonInteractivePrompter:
    """
    --no-input 실행용. 입력이 필요한 값은 전부 override 로 제공되어야 한다.
    """

    def prompt(self, label: str, *, secret: bool = True, confirm: bool = False) -> str:
        return ""


class ClickConfirmer:
    def confirm(self, question: str, *, default: bool = False) -> bool:
        return click.confirm(question, default=default)


class AutoConfirmer:
    """SKIP_CONFIRM / --yes 용. 미리 정한 답을 돌려준다."""

    def __init__(self, answer: bool = True) -> None:
        self._answer = answer

    def confirm(self, question: str, *, default: bool = False) -> bool:
        logger.info("확인 생략 (%s): %s", "yes" if self._answer else "no", question)
        return self._answer


def _lookup_override(var: ConfigVariable, overrides: Mapping[str, str]) -> Optional[str]:
    for key in var.override_keys:
        value = overrides.get(key)
        if value is not None and value != "":
            if key != var.name:
                logger.debug("%s 값을 환경변수 %s 에서 사용합니다.", var.name, key)
            return value
    return None


def resolve(
    registry: Registry,
    overrides: Mapping[str, str],
    prompter: Prompter,
    generators: Optional[Mapping[str, Callable[[], str]]] = None,
    *,
    cache: Optional[MutableMapping[str, ResolvedValue]] = None,
    protected: Optional[Mapping[str, Iterable[str]]] = None,
    only: Optional[Iterable[str]] = None,
) -> Dict[str, ResolvedValue]:
    """
    레지스트리의 모든 변수를 해석하여 name -> ResolvedValue 매핑을 돌려준다.

    - 필수 입력 변수에 빈 값이 들어오면 EmptyRequiredValue
    - 선택 변수가 빈 값이면 경고 후 결과에서 제외
    - protected 가 주어지면 해석 전에 override 를 보호 목록과 대조한다
    - only 가 주어지면 그 밖의 입력/생성 변수는 묻지 않고 결과에서 뺀다
    """
    if protected is not None:
        registry.validate_overrides(overrides, protected)

    generators = generators or {}
    cache = {} if cache is None else cache
    wanted = None if only is None else set(only)

    resolved: Dict[str, ResolvedValue] = {}
    # 파생 규칙의 입력. 빈 값도 포함한다.
    raw: Dict[str, str] = {}

    for var in registry:
        if (
            wanted is not None
            and var.name not in wanted
            and var.kind in (Interactive.kind, Generated.kind)
        ):
            continue

        result = _resolve_one(var, overrides, prompter, generators, cache, raw)
        raw[var.name] = result.value

        if result.value == "":
            if var.required and var.kind in (Interactive.kind, Generated.kind):
                raise EmptyRequiredValue(var.name)
            logger.warning("값이 비어 있어 %s 을(를) 건너뜁니다.", var.name)
            continue

        if _is_secret(var):
            mask_secret(result.value)
        resolved[var.name] = result

    return resolved


def _is_secret(var: ConfigVariable) -> bool:
    if isinstance(var.rule, Interactive):
        return var.rule.secret
    return isinstance(var.rule, Generated)


def _resolve_one(
    var: ConfigVariable,
    overrides: Mapping[str, str],
    prompter: Prompter,
    generators: Mapping[str, Callable[[], str]],
    cache: MutableMapping[str, ResolvedValue],
    raw: Mapping[str, str],
) -> ResolvedValue:
    override = _lookup_override(var, overrides)
    if override is not None:
        return ResolvedValue(var.name, override, Origin.OVERRIDE)

    rule = var.rule
    if isinstance(rule, Static):
        return ResolvedValue(var.name, rule.value, Origin.DEFAULT)

    if isinstance(rule, Derived):
        return ResolvedValue(var.name, rule.func(raw), Origin.DEFAULT)

    if isinstance(rule, Environment):
        value = overrides.get(rule.source) or ""
        if value:
            return ResolvedValue(var.name, value, Origin.OVERRIDE)
        return ResolvedValue(var.name, rule.default, Origin.DEFAULT)

    if var.name in cache:
        return cache[var.name]

    if isinstance(rule, Interactive):
        value = prompter.prompt(rule.label, secret=rule.secret, confirm=rule.confirm)
        result = ResolvedValue(var.name, value.strip(), Origin.PROMPTED)
    elif isinstance(rule, Generated):
        generator = generators.get(var.name) or rule.generator or generate_encryption_key
        result = ResolvedValue(var.name, generator(), Origin.GENERATED)
        logger.info("%s 을(를) 새로 생성했습니다.", var.name)
    else:  # pragma: no cover
        raise TypeError(f"알 수 없는 규칙 타입입니다: {rule!r}")

    if result.value:
        cache[var.name] = result
    return result

"""CAPTCHA solving with arithmetic evaluation and operator escalation."""

import ast
import asyncio
import logging
import math
import operator
import re
import secrets
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Protocol

from otp_relay.domain.panel import CaptchaChallenge

_logger = logging.getLogger(__name__)

_DISALLOWED_CHARS = re.compile(r"[^0-9+\-*/=()\s]")
_SYMBOL_ALIASES = {"×": "*", "÷": "/", "−": "-"}
_LETTER_TIMES = re.compile(r"(?<=\d)\s*[xX]\s*(?=\d)")

_BINARY_OPERATORS: dict[type[ast.operator], Callable[[float, float], float]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
}
_UNARY_OPERATORS: dict[type[ast.unaryop], Callable[[float], float]] = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}


class CaptchaError(Exception):
    """Raised when a challenge could not be solved."""


class CaptchaTimeout(CaptchaError):
    """Raised when no operator answered before the deadline."""


class ChallengeNotifier(Protocol):
    """Out-of-band channel used to reach the operator."""

    async def notify_operator_of_challenge(
        self, challenge_id: str, raw_text: str
    ) -> bool:
        """Send the challenge to the operator; return False on failure."""


def solve_arithmetic(challenge_text: str) -> str:
    """Evaluate a challenge like ``"12 + 7 ="`` and return the answer.

    Raises ValueError when the text is not a well-formed arithmetic
    expression.
    """
    text = challenge_text
    for alias, symbol in _SYMBOL_ALIASES.items():
        text = text.replace(alias, symbol)
    text = _LETTER_TIMES.sub(" * ", text)
    expression = _DISALLOWED_CHARS.sub("", text).split("=")[0].strip()
    if not any(char.isdigit() for char in expression):
        raise ValueError(f"No arithmetic expression in {challenge_text!r}")
    try:
        tree = ast.parse(expression, mode="eval")
    except SyntaxError as exc:
        raise ValueError(f"Malformed expression {expression!r}") from exc
    value = _evaluate(tree.body)
    if isinstance(value, int):
        return str(value)
    if not math.isfinite(value):
        raise ValueError(f"Result out of range for {expression!r}")
    if value.is_integer():
        return str(int(value))
    return f"{value:g}"


def _evaluate(node: ast.AST) -> float:
    if isinstance(node, ast.Constant) and isinstance(node.value, int | float):
        return node.value
    if isinstance(node, ast.BinOp) and type(node.op) in _BINARY_OPERATORS:
        left = _evaluate(node.left)
        right = _evaluate(node.right)
        try:
            return _BINARY_OPERATORS[type(node.op)](left, right)
        except ZeroDivisionError as exc:
            raise ValueError("Division by zero") from exc
        except OverflowError as exc:
            raise ValueError("Result out of range") from exc
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPERATORS:
        return _UNARY_OPERATORS[type(node.op)](_evaluate(node.operand))
    raise ValueError(f"Unsupported expression node: {type(node).__name__}")


@dataclass
class _PendingChallenge:
    challenge: CaptchaChallenge
    future: "asyncio.Future[str]"


@dataclass
class CaptchaResolver:
    """Solve panel CAPTCHAs, escalating to a human operator when needed.

    Each escalated challenge owns a pending slot keyed by its id. The slot
    is removed exactly once, either by ``submit_solution`` or when the wait
    times out, whichever happens first.
    """

    notifier: ChallengeNotifier
    timeout_seconds: float = 30.0
    _pending: dict[str, _PendingChallenge] = field(default_factory=dict, init=False)

    async def solve(self, challenge_text: str) -> str:
        """Return the answer for a challenge or raise CaptchaError."""
        try:
            answer = solve_arithmetic(challenge_text)
        except ValueError as exc:
            _logger.info("Captcha not arithmetic (%s); escalating to operator", exc)
            return await self.escalate(challenge_text)
        _logger.info("Solved captcha %r = %s", challenge_text, answer)
        return answer

    async def escalate(self, challenge_text: str) -> str:
        """Ask the operator for an answer and wait up to the timeout."""
        challenge = CaptchaChallenge(
            id=secrets.token_hex(8),
            raw_text=challenge_text,
            created_at=datetime.now(tz=UTC),
        )
        future: asyncio.Future[str] = asyncio.get_running_loop().create_future()
        self._pending[challenge.id] = _PendingChallenge(challenge, future)
        try:
            sent = await self.notifier.notify_operator_of_challenge(
                challenge.id, challenge.raw_text
            )
            if not sent:
                raise CaptchaError(
                    f"Operator could not be notified of captcha {challenge.id}"
                )
            return await asyncio.wait_for(future, timeout=self.timeout_seconds)
        except TimeoutError as exc:
            raise CaptchaTimeout(
                f"No answer for captcha {challenge.id} within "
                f"{self.timeout_seconds:g}s"
            ) from exc
        finally:
            self._pending.pop(challenge.id, None)

    def submit_solution(self, challenge_id: str, solution_text: str) -> bool:
        """Fulfil a pending challenge; return False if it cannot be fulfilled."""
        solution = solution_text.strip()
        if not solution:
            return False
        pending = self._pending.pop(challenge_id, None)
        if pending is None or pending.future.done():
            _logger.info("Ignored answer for closed captcha %s", challenge_id)
            return False
        pending.future.set_result(solution)
        _logger.info("Operator answered captcha %s", challenge_id)
        return True

    def pending_challenges(self) -> list[CaptchaChallenge]:
        """Return challenges still waiting for an operator answer."""
        return [
            pending.challenge
            for pending in self._pending.values()
            if not pending.future.done()
        ]

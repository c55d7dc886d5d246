"""Three-level operator confirmation with typed tokens.

A destructive step needs a ``FinalConfirmed`` token.  Tokens can only be
issued by ``ConfirmationGate`` and each one is bound to a single plan, so
code that skips a level, or reuses a token from another plan, fails
before touching the database.

Levels:
    1. type the target database name
    2. type the operation keyword (``RESTORE`` or ``RESET``)
    3. type ``YES I AM SURE``

Usage:
    gate = ConfirmationGate(operator)
    token = gate.run(plan.plan_id, "shop", keyword="RESTORE")
"""

import logging
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Protocol

from db_backup.errors import ConfirmationDeclined

logger = logging.getLogger(__name__)

FINAL_PHRASE = "YES I AM SURE"

_GATE_KEY = object()


class ConfirmationLevel(IntEnum):
    UNCONFIRMED = 0
    NAME_CONFIRMED = 1
    KEYWORD_CONFIRMED = 2
    FINAL_CONFIRMED = 3


class Operator(Protocol):
    """The human (or script) answering prompts."""

    def ask_text(self, prompt: str) -> str:
        """Return free text typed in answer to ``prompt``."""
        ...

    def ask_yes_no(self, prompt: str) -> bool:
        """Return True only for an explicit yes."""
        ...

    def choose(self, prompt: str, options: list[str]) -> int | None:
        """Return a 0-based index into ``options``, or None to cancel."""
        ...

    def show(self, message: str) -> None:
        """Display information that needs no answer."""
        ...


@dataclass(frozen=True)
class _Token:
    plan_id: str
    _key: object = field(default=None, repr=False, compare=False)

    level = ConfirmationLevel.UNCONFIRMED

    def __post_init__(self) -> None:
        if self._key is not _GATE_KEY:
            raise TypeError(f"{type(self).__name__} can only be issued by ConfirmationGate")


@dataclass(frozen=True)
class NameConfirmed(_Token):
    level = ConfirmationLevel.NAME_CONFIRMED


@dataclass(frozen=True)
class KeywordConfirmed(_Token):
    level = ConfirmationLevel.KEYWORD_CONFIRMED


@dataclass(frozen=True)
class FinalConfirmed(_Token):
    level = ConfirmationLevel.FINAL_CONFIRMED


def require_final(token: object, plan_id: str) -> FinalConfirmed:
    """Check ``token`` authorizes the destructive step of ``plan_id``.

    Raises:
        ConfirmationDeclined: If the token is missing, of a lower level,
            or issued for a different plan.
    """
    if not isinstance(token, FinalConfirmed):
        raise ConfirmationDeclined(
            "Destructive step requires final confirmation", stage="confirm"
        )
    if token.plan_id != plan_id:
        raise ConfirmationDeclined(
            "Confirmation was given for a different operation", stage="confirm"
        )
    return token


class ConfirmationGate:
    """Issues confirmation tokens from operator answers.

    Args:
        operator: Answers the prompts.  May be None when ``assume_yes``.
        assume_yes: Pass all three levels without asking (``--yes``).
    """

    def __init__(self, operator: Operator | None, assume_yes: bool = False) -> None:
        self._operator = operator
        self._assume_yes = assume_yes

    def _ask(self, prompt: str) -> str:
        if self._operator is None:
            raise ConfirmationDeclined(
                "Confirmation required but no operator is available",
                stage="confirm",
                recovery_hint="Run interactively or pass --yes.",
            )
        return self._operator.ask_text(prompt).strip()

    def confirm_name(self, plan_id: str, target_database: str) -> NameConfirmed:
        if not self._assume_yes:
            answer = self._ask(f"Level 1: type the database name '{target_database}' to continue")
            if answer != target_database:
                logger.info("Cancelled (database name mismatch)")
                raise ConfirmationDeclined("Database name did not match", stage="confirm")
        return NameConfirmed(plan_id, _GATE_KEY)

    def confirm_keyword(self, token: NameConfirmed, keyword: str) -> KeywordConfirmed:
        if not isinstance(token, NameConfirmed):
            raise ConfirmationDeclined("Name confirmation is missing", stage="confirm")
        if not self._assume_yes:
            answer = self._ask(f"Level 2: type '{keyword}' in uppercase to continue")
            if answer != keyword:
                logger.info(f"Cancelled (missing {keyword} confirmation)")
                raise ConfirmationDeclined(f"Keyword {keyword} was not typed", stage="confirm")
        return KeywordConfirmed(token.plan_id, _GATE_KEY)

    def confirm_final(self, token: KeywordConfirmed) -> FinalConfirmed:
        if not isinstance(token, KeywordConfirmed):
            raise ConfirmationDeclined("Keyword confirmation is missing", stage="confirm")
        if not self._assume_yes:
            answer = self._ask(f"Are you absolutely sure? Type '{FINAL_PHRASE}'")
            if answer != FINAL_PHRASE:
                logger.info("Cancelled (final confirmation not given)")
                raise ConfirmationDeclined("Final confirmation was not given", stage="confirm")
        return FinalConfirmed(token.plan_id, _GATE_KEY)

    def run(self, plan_id: str, target_database: str, keyword: str) -> FinalConfirmed:
        """Walk all three levels in order.

        Raises:
            ConfirmationDeclined: On the first mismatching answer.
        """
        name_token = self.confirm_name(plan_id, target_database)
        keyword_token = self.confirm_keyword(name_token, keyword)
        final = self.confirm_final(keyword_token)
        if self._assume_yes:
            logger.warning(f"Confirmation of {keyword} on '{target_database}' assumed (--yes)")
        return final

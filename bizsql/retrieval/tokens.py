"""
Token accounting for prompt assembly.

Token counts are estimated at roughly four characters per token; the same
estimate is used by retrieval and prompt assembly so that the sizes they
report always agree.
"""

import math
from dataclasses import dataclass
from typing import Dict, Optional

from loguru import logger

from bizsql.config.settings import settings
from bizsql.utils.errors import TokenBudgetExceeded

CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


@dataclass(frozen=True)
class BudgetConfig:
    """Caller-supplied budget for one request."""
    max_total_tokens: int = None
    reserved_response_tokens: int = None

    def __post_init__(self):
        if self.max_total_tokens is None:
            object.__setattr__(self, "max_total_tokens", settings.max_total_tokens)
        if self.reserved_response_tokens is None:
            object.__setattr__(self, "reserved_response_tokens", settings.reserved_response_tokens)


class TokenBudget:
    """
    Hard ceiling on context size for one request.

    Consumption only ever grows. Consuming past the ceiling raises instead
    of truncating, so a request never proceeds with an oversized prompt.
    """

    def __init__(self, max_total_tokens: int):
        if max_total_tokens <= 0:
            raise ValueError("max_total_tokens must be positive")
        self.max_total_tokens = max_total_tokens
        self._consumed = 0
        self._ledger: Dict[str, int] = {}

    @classmethod
    def from_config(cls, config: Optional[BudgetConfig] = None) -> "TokenBudget":
        config = config or BudgetConfig()
        budget = cls(config.max_total_tokens)
        if config.reserved_response_tokens:
            budget.consume(config.reserved_response_tokens, "response")
        return budget

    @property
    def consumed_tokens(self) -> int:
        return self._consumed

    @property
    def remaining(self) -> int:
        return self.max_total_tokens - self._consumed

    @property
    def ledger(self) -> Dict[str, int]:
        return dict(self._ledger)

    def fits(self, tokens: int) -> bool:
        return tokens <= self.remaining

    def consume(self, tokens: int, section: str) -> int:
        """Record ``tokens`` against ``section``; returns the new remaining amount."""
        if tokens < 0:
            raise ValueError("Cannot consume a negative token count")
        if tokens > self.remaining:
            raise TokenBudgetExceeded(
                f"Section '{section}' needs {tokens} tokens but only {self.remaining} of "
                f"{self.max_total_tokens} remain",
                stage="budget",
            )
        self._consumed += tokens
        self._ledger[section] = self._ledger.get(section, 0) + tokens
        logger.debug(f"Budget: {section} +{tokens} ({self._consumed}/{self.max_total_tokens})")
        return self.remaining

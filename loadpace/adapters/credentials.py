"""Bearer-token sources injected into a run."""

from __future__ import annotations

import itertools
import os
import random
import threading
from typing import TYPE_CHECKING, Optional, Sequence

from ..utils.errors import PlanValidationError
from .base import CredentialProvider

if TYPE_CHECKING:
    from ..core.config import CredentialsConfig
    from ..core.settings import LoadPaceSettings


class StaticTokenProvider(CredentialProvider):
    """Picks one of a fixed set of tokens per iteration.

    ``random`` mirrors picking a random account per request; ``round_robin``
    spreads requests evenly across accounts.
    """

    def __init__(
        self,
        tokens: Sequence[str],
        *,
        strategy: str = "random",
        rng: Optional[random.Random] = None,
    ):
        if not tokens:
            raise ValueError("StaticTokenProvider needs at least one token")
        if strategy not in ("random", "round_robin"):
            raise ValueError(f"Unknown token strategy: {strategy}")
        self.tokens = list(tokens)
        self.strategy = strategy
        self._rng = rng or random.Random()
        self._cycle = itertools.cycle(self.tokens)
        self._lock = threading.Lock()

    def token(self) -> Optional[str]:
        if self.strategy == "round_robin":
            with self._lock:
                return next(self._cycle)
        return self._rng.choice(self.tokens)


def provider_from_config(
    config: Optional["CredentialsConfig"],
    settings: "LoadPaceSettings",
) -> Optional[CredentialProvider]:
    """Resolve the plan's credentials section into a provider.

    Token sources, first non-empty wins: tokens listed in the plan, the
    environment variable the plan names, then ``LOADPACE_TOKENS``.
    """
    if config is None:
        return None

    tokens = list(config.tokens)
    if not tokens and config.tokens_env:
        raw = os.getenv(config.tokens_env, "")
        tokens = [t.strip() for t in raw.split(",") if t.strip()]
    if not tokens:
        tokens = settings.token_list()
    if not tokens:
        raise PlanValidationError(
            "Plan requests bearer credentials but no tokens were found. Please:\n"
            "1. List them under credentials.tokens, or\n"
            "2. Point credentials.tokens_env at a comma-separated environment variable, or\n"
            "3. Set LOADPACE_TOKENS"
        )
    return StaticTokenProvider(tokens, strategy=config.strategy)

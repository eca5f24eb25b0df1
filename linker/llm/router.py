"""
LLM Router
==========
Chooses which reasoning-model provider answers a match request.

Order:
    OpenAI (primary) → Groq → Gemini. A provider is only configured when its
    API key is set, so a deployment with a single key has a single provider.

Circuit breaker:
    PROVIDER_COOLDOWN_THRESHOLD failures in a row trip a provider's breaker;
    it is then left out of the next PROVIDER_COOLDOWN_SKIP_COUNT requests.
    After that it is tried again half-open: one more failure trips it at once,
    one success closes it. State is per process and never persisted.
"""
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from linker.core import config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderConfig:
    """Endpoint and credentials of one provider."""
    name: str
    api_key: str
    base_url: str
    model: str
    timeout_seconds: float = config.HTTP_TIMEOUT_SECONDS


def default_providers() -> List[ProviderConfig]:
    """Providers in fallback order, built from the environment."""
    return [
        ProviderConfig(
            name="openai",
            api_key=config.OPENAI_API_KEY or "",
            base_url="https://api.openai.com/v1",
            model=config.OPENAI_MODEL,
            # Large runs produce long prompts; the primary gets extra headroom
            timeout_seconds=max(config.HTTP_TIMEOUT_SECONDS, 90),
        ),
        ProviderConfig(
            name="groq",
            api_key=config.GROQ_API_KEY or "",
            base_url="https://api.groq.com/openai/v1",
            model=config.GROQ_MODEL,
        ),
        ProviderConfig(
            name="gemini",
            api_key=config.GEMINI_API_KEY or "",
            base_url="https://generativelanguage.googleapis.com/v1beta",
            model=config.GEMINI_MODEL,
        ),
    ]


@dataclass
class ProviderHealth:
    max_failures: int = config.PROVIDER_COOLDOWN_THRESHOLD
    skip_count: int = config.PROVIDER_COOLDOWN_SKIP_COUNT
    consecutive_failures: int = 0
    skips_left: int = 0

    @property
    def tripped(self) -> bool:
        return self.skips_left > 0

    def record_failure(self, name: str) -> None:
        self.consecutive_failures += 1
        if self.consecutive_failures >= self.max_failures and not self.tripped:
            self.skips_left = self.skip_count
            logger.warning(
                "Provider %s failed %d times in a row, skipping it for %d request(s)",
                name, self.consecutive_failures, self.skips_left,
            )

    def record_success(self) -> None:
        self.consecutive_failures = 0
        self.skips_left = 0

    def skip_once(self, name: str) -> None:
        self.skips_left -= 1
        if not self.tripped:
            # Half-open: the next failure alone re-trips the breaker
            self.consecutive_failures = self.max_failures - 1
            logger.info("Provider %s is back in rotation", name)


class LLMRouter:
    """
    Usage:
        router = LLMRouter()
        for provider in router.providers_in_order():
            ...
            router.report_success(provider.name)   # or report_failure(...)
    """

    def __init__(self, providers: Optional[List[ProviderConfig]] = None) -> None:
        candidates = default_providers() if providers is None else providers
        self._providers = [p for p in candidates if p.api_key]
        self._health: Dict[str, ProviderHealth] = {p.name: ProviderHealth() for p in self._providers}
        if self._providers:
            logger.info("Reasoning-model providers: %s", ", ".join(self.provider_names))
        else:
            logger.warning("No reasoning-model provider has an API key configured")

    @property
    def provider_names(self) -> List[str]:
        return [p.name for p in self._providers]

    def providers_in_order(self) -> List[ProviderConfig]:
        """
        Providers to try for one request, in fallback order.

        Tripped providers are skipped, which uses up one of their skips. If
        every breaker is open the primary is tried anyway.
        """
        ordered = []
        for provider in self._providers:
            health = self._health[provider.name]
            if health.tripped:
                health.skip_once(provider.name)
                continue
            ordered.append(provider)

        if not ordered and self._providers:
            logger.warning("Every provider is cooling down, trying %s anyway", self._providers[0].name)
            return [self._providers[0]]
        return ordered

    def report_success(self, provider_name: str) -> None:
        if provider_name in self._health:
            self._health[provider_name].record_success()

    def report_failure(self, provider_name: str) -> None:
        if provider_name in self._health:
            self._health[provider_name].record_failure(provider_name)

    def get_health(self, provider_name: str) -> Optional[ProviderHealth]:
        return self._health.get(provider_name)

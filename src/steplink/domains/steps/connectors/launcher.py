"""Store-listing hand-off for an outdated or missing provider."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote

logger = logging.getLogger(__name__)

STORE_PACKAGE = "com.android.vending"
ONBOARDING_URL = "healthconnect://onboarding"

# Older intents are dropped once the outbox is full.
OUTBOX_LIMIT = 16


@dataclass(frozen=True)
class StoreIntent:
    """An 'open store listing' request for the OS to handle."""

    action: str
    package: str
    uri: str
    extras: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "package": self.package,
            "uri": self.uri,
            "extras": dict(self.extras),
        }


def build_store_intent(
    provider_package: str,
    caller_package: str,
    *,
    store_package: str = STORE_PACKAGE,
    onboarding_url: str = ONBOARDING_URL,
) -> StoreIntent:
    """Build the intent that opens the provider's store listing.

    The onboarding URL is passed through so the store can return control to
    ``caller_package`` once the provider is installed or updated.
    """
    uri = f"market://details?id={provider_package}&url={quote(onboarding_url, safe='')}"
    return StoreIntent(
        action="android.intent.action.VIEW",
        package=store_package,
        uri=uri,
        extras={"overlay": True, "callerId": caller_package},
    )


class IntentOutbox:
    """AppLauncher that keeps launched intents for the client to act on.

    The MCP server has no OS to hand off to, so intents are queued here and
    surfaced through the workflow status tool.
    """

    def __init__(self) -> None:
        self._launched: deque[StoreIntent] = deque(maxlen=OUTBOX_LIMIT)

    def launch(self, intent: StoreIntent) -> None:
        logger.info("Handing off to store: %s (%s)", intent.uri, intent.package)
        self._launched.append(intent)

    @property
    def last_intent(self) -> StoreIntent | None:
        return self._launched[-1] if self._launched else None

    @property
    def launched(self) -> list[StoreIntent]:
        return list(self._launched)

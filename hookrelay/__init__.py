"""hookrelay - webhook registry and dispatcher.

Register named endpoints ("shortnames") mapped to one or more URLs, then
trigger a shortname to POST a JSON payload to every URL. Each delivery
publishes a success or failure outcome on the dispatch bus.

Sub-packages:
- storage/   - storage port realizations (memory, JSON file, Redis)
- logging/   - structlog-backed LoggerProtocol implementation
- utils/     - string helpers

Top-level modules:
- bus        - exact and ``*.<suffix>`` wildcard pub/sub
- delivery   - actions, delivery executor, httpx transport
- registry   - Dictionary + action table consistency
- webhooks   - public facade, composition from Settings
- settings   - pydantic-settings configuration
- cli        - operator command line

Usage:
    from hookrelay import WebHooks

    hooks = WebHooks(http_success_codes=[200, 201])
    await hooks.add("deploy", "https://ci.example.com/hook")
    hooks.on("deploy.failure", handle_failure)
    hooks.trigger("deploy", {"ref": "main"})
"""

from hookrelay.bus import DispatchBus, Subscription
from hookrelay.errors import (
    DeliveryError,
    HookRelayError,
    InvalidArgumentError,
    StorageError,
)
from hookrelay.protocols import DeliveryOutcome, TriggerContext
from hookrelay.settings import Settings, get_settings
from hookrelay.webhooks import WebHooks, create_webhooks

__version__ = "1.0.0"

__all__ = [
    "DispatchBus",
    "Subscription",
    "DeliveryError",
    "HookRelayError",
    "InvalidArgumentError",
    "StorageError",
    "DeliveryOutcome",
    "TriggerContext",
    "Settings",
    "get_settings",
    "WebHooks",
    "create_webhooks",
    "__version__",
]

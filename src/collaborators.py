"""
Interfaces of the external collaborators the engine talks to.

The engine only depends on these shapes; the browser host (or a test fake)
provides the implementations.
"""

from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from threat_models import ExtensionInfo, NotificationRequest, PageBehaviorData


@runtime_checkable
class BehaviorCollector(Protocol):
    async def collect(self, target: Any) -> Optional[PageBehaviorData]:
        """
        Gather script / network / API observations from a loaded page.

        Returns None when the page cannot be inspected. May raise
        CollectionDenied.
        """


@runtime_checkable
class ExtensionPlatform(Protocol):
    self_id: str

    async def list_extensions(self) -> List[ExtensionInfo]:
        ...

    async def set_enabled(self, extension_id: str, enabled: bool) -> None:
        """Raises ExtensionActionDenied if the platform refuses."""

    async def uninstall(self, extension_id: str) -> None:
        """Raises ExtensionActionDenied if the platform refuses."""

    async def open_details(self, extension_id: str) -> None:
        ...


@runtime_checkable
class Notifier(Protocol):
    async def notify(self, request: NotificationRequest) -> str:
        """Show a notification, return its id. Raises IconLoadError."""


@runtime_checkable
class ThreatModel(Protocol):
    def predict(self, vectors: List[List[float]]) -> List[List[float]]:
        """Return one [safe, phishing] score pair per feature vector."""


@runtime_checkable
class KeyValueStore(Protocol):
    async def get(self, key: str, default: Any = None) -> Any:
        ...

    async def set(self, key: str, value: Any) -> None:
        ...

    async def remove(self, key: str) -> None:
        ...

    async def items(self, prefix: str = '') -> Dict[str, Any]:
        ...

    async def increment(self, key: str, field: str, amount: int = 1) -> int:
        ...

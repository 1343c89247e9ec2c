"""Transport abstraction for the messaging backend."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional

from courier.models import AuthState


class BaseTransport(ABC):
    """Single backend connection handle owned by the connection session."""

    @abstractmethod
    async def connect(self, auth: AuthState) -> None:
        ...

    @abstractmethod
    async def send_message(
        self,
        recipient: str,
        content: dict[str, Any],
        options: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        ...

    @abstractmethod
    async def send_presence(self, recipient: str, state: str) -> None:
        ...

    @abstractmethod
    async def receive(self) -> dict[str, Any]:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...

"""Policy Domain Ports (Interfaces)."""
from abc import ABC, abstractmethod
from typing import List, Optional

from .models import AccessPolicy


class PolicyStore(ABC):
    """Abstract Port for policy storage.

    Iteration order of ``list_policies`` is registration order; the engine
    relies on it for tie-breaking.
    """

    @abstractmethod
    def put(self, policy: AccessPolicy) -> None:
        """Insert or replace a policy by id."""
        ...

    @abstractmethod
    def remove(self, policy_id: str) -> bool:
        """Remove a policy. Returns True if it existed."""
        ...

    @abstractmethod
    def get(self, policy_id: str) -> Optional[AccessPolicy]:
        ...

    @abstractmethod
    def list_policies(self) -> List[AccessPolicy]:
        ...

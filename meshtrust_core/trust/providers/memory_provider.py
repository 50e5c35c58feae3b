from typing import Any, Dict, Iterable, List, Tuple
from meshtrust_core.trust.models import TrustRecord
from meshtrust_core.trust.provider import TrustStore


class InMemoryTrustStore(TrustStore):
    def __init__(self):
        self.audit: List[Tuple[str, Dict[str, Any]]] = []
        super().__init__()

    def _load(self) -> Iterable[TrustRecord]:
        return ()

    def _persist(self, rec: TrustRecord) -> None:
        pass

    def _delete(self, peer_id: str) -> None:
        pass

    def log_event(self, event_type: str, payload: Dict[str, Any]) -> None:
        self.audit.append((event_type, payload))

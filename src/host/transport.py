"""Transport interface the host dispatcher sends through."""

from typing import Iterable, Protocol


class Transport(Protocol):
    """Best-effort, fire-and-forget delivery to connected players.

    Messages to one recipient arrive in the order they were sent; there is
    no ordering between recipients and no delivery acknowledgement.
    Sends to unknown ids are silently dropped.
    """

    def send_to(self, peer_id: str, message: dict) -> None:
        ...

    def broadcast(self, message: dict) -> None:
        ...

    def close(self, peer_id: str) -> None:
        ...


def send_to_many(transport: Transport, peer_ids: Iterable[str], message: dict) -> None:
    """Send one message to several recipients, each at most once."""
    seen = set()
    for peer_id in peer_ids:
        if peer_id in seen:
            continue
        seen.add(peer_id)
        transport.send_to(peer_id, message)

from __future__ import annotations

from dataclasses import dataclass

from app.operations.repository import OperationStore
from app.wallet.base import WalletGateway
from services.notifications import NotificationDispatcher


@dataclass(frozen=True)
class ProcessingContext:
    """Collaborators handed to every handler by the process entry point."""

    store: OperationStore
    gateway: WalletGateway
    notifier: NotificationDispatcher

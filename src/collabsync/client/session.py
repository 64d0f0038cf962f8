"""One-stop wiring of state, connection and commands for a signed-in user."""

from collabsync.client.commands import CommandAPI
from collabsync.client.connection import ConnectionManager
from collabsync.client.notify import NotificationPermission, Notifier
from collabsync.client.transport import TransportFactory
from collabsync.config import SyncConfig
from collabsync.models.identity import Identity
from collabsync.store.state import SyncState


class SyncClient:
    """A sync session for one identity.

    ``state`` is what the UI reads, ``commands`` is what it calls, and
    ``connection`` exposes the connectivity indicator.
    """

    def __init__(
        self,
        identity: Identity,
        config: SyncConfig | None = None,
        state: SyncState | None = None,
        transport_factory: TransportFactory | None = None,
        notifier: Notifier | None = None,
        notification_permission: NotificationPermission = NotificationPermission.DEFAULT,
    ) -> None:
        self.identity = identity
        self.config = config or SyncConfig.from_env()
        self.state = state or SyncState(typing_timeout=self.config.typing_timeout)
        self.connection = ConnectionManager(
            self.state,
            self.config,
            transport_factory=transport_factory,
            notifier=notifier,
            notification_permission=notification_permission,
        )
        self.commands = CommandAPI(self.connection, identity)

    async def connect(self) -> None:
        await self.connection.connect(self.identity.user_id, self.identity.token)

    async def disconnect(self) -> None:
        await self.connection.disconnect()

    async def __aenter__(self) -> "SyncClient":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.disconnect()

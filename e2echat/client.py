"""Chat client: session facade over the directory plus an interactive CLI."""

import argparse
import asyncio
import logging
from typing import Callable, List, Optional

from e2echat.common.config import Settings, load_settings
from e2echat.common.errors import AuthenticationError, ChatError, NotLoggedIn
from e2echat.common.protocol import OpenedMessage
from e2echat.crypto import envelope, rsa
from e2echat.exchange import Identity, KeyCache, KeyExchangeCoordinator
from e2echat.poller import ConversationPoller, OnUpdate
from e2echat.storage.directory import DirectoryService
from e2echat.storage.keystore import FileKeyStore, KeyStore

logger = logging.getLogger(__name__)

KeyStoreFactory = Callable[[str], KeyStore]


class ChatClient:
    """
    One user session.

    login() creates the RSA key pair and publishes the public half, which is
    what makes the user reachable. logout() unpublishes it and drops the
    private key and every cached session key.
    """

    def __init__(
        self,
        directory: DirectoryService,
        keystore_factory: Optional[KeyStoreFactory] = None,
        settings: Optional[Settings] = None,
    ):
        self.directory = directory
        self.settings = settings or load_settings()
        self._keystore_factory = keystore_factory or (
            lambda owner: FileKeyStore(self.settings.keystore_dir, owner)
        )
        self.identity: Optional[Identity] = None
        self.coordinator: Optional[KeyExchangeCoordinator] = None
        self._pollers: List[ConversationPoller] = []

    @property
    def username(self) -> str:
        return self._require_session().username

    def _require_session(self) -> KeyExchangeCoordinator:
        if self.coordinator is None:
            raise NotLoggedIn("log in first")
        return self.coordinator

    # ============ Session ============

    async def register(self, username: str, password: str) -> None:
        await self.directory.register_user(username, password)
        logger.info("registered %s", username)

    async def login(self, username: str, password: str) -> Identity:
        if self.coordinator is not None:
            await self.logout()
        if not await self.directory.authenticate(username, password):
            raise AuthenticationError("invalid username or password")

        public_key, private_key = rsa.generate_keypair(self.settings.rsa_key_size)
        await self.directory.put_public_key(username, public_key)

        self.identity = Identity(username=username, public_key=public_key, private_key=private_key)
        self.coordinator = KeyExchangeCoordinator(
            self.identity,
            self.directory,
            self._keystore_factory(username),
            cache=KeyCache(),
            tie_break=self.settings.tie_break,
        )
        logger.info("%s logged in, public key published", username)
        return self.identity

    async def logout(self, clear_keys: bool = False) -> None:
        """
        Unpublish the public key, then drop the session. If the unpublish
        fails the session is kept so logout() can be retried.
        """
        coordinator = self._require_session()
        pollers, self._pollers = self._pollers, []
        for poller in pollers:
            try:
                await poller.stop()
            except Exception:
                logger.exception("stopping poller for %s failed", poller.peer)

        await self.directory.delete_public_key(coordinator.username)

        if clear_keys:
            coordinator.clear_local_keys()
        else:
            coordinator.clear_cache()
        logger.info("%s logged out", coordinator.username)
        self.coordinator = None
        self.identity = None

    # ============ Chat ============

    async def list_online_users(self) -> List[str]:
        coordinator = self._require_session()
        return await self.directory.list_reachable_identities(excluding=coordinator.username)

    async def send_message(self, peer: str, text: str) -> str:
        coordinator = self._require_session()
        key = await coordinator.obtain_session_key(peer)
        env, digest = envelope.seal(text, key)
        return await self.directory.put_message(coordinator.username, peer, env, digest)

    async def fetch_conversation(self, peer: str) -> List[OpenedMessage]:
        coordinator = self._require_session()
        records = await self.directory.get_messages(coordinator.username, peer)
        if not records:
            return []
        key = await coordinator.obtain_session_key(peer)
        return envelope.open_messages(records, lambda _record: key)

    def poll(
        self, peer: str, on_update: OnUpdate, interval: Optional[float] = None
    ) -> ConversationPoller:
        """Poller for one conversation; the caller starts it (or uses ``async with``)."""
        coordinator = self._require_session()
        poller = ConversationPoller(
            peer,
            self.fetch_conversation,
            on_update,
            interval=interval or self.settings.poll_interval,
            reconcile=coordinator.reconcile if coordinator.tie_break else None,
        )
        self._pollers.append(poller)
        return poller


# ============ CLI ============

def _render(messages: List[OpenedMessage], me: str) -> None:
    print("-" * 60)
    for m in messages:
        who = "me" if m.sender == me else m.sender
        mark = " ✓" if m.verified else ""
        print(f"[{m.timestamp:%H:%M:%S}] {who}: {m.display_text}{mark}")


async def run_cli(args: argparse.Namespace) -> None:
    from e2echat.storage.db import MySQLDirectory

    client = ChatClient(MySQLDirectory())

    if args.register:
        await client.register(args.user, args.password)
        print(f"[+] Registered {args.user}")

    await client.login(args.user, args.password)
    print(f"[+] Logged in as {args.user}")

    try:
        online = await client.list_online_users()
        print(f"[*] Online: {', '.join(online) if online else '(nobody)'}")

        async with client.poll(args.peer, lambda msgs: _render(msgs, args.user), args.interval):
            print(f"[*] Chatting with {args.peer}. Type /quit to leave.")
            while True:
                line = await asyncio.to_thread(input)
                line = line.strip()
                if not line:
                    continue
                if line == "/quit":
                    break
                try:
                    await client.send_message(args.peer, line)
                except ChatError as e:
                    print(f"[!] Failed to send message: {e}")
    finally:
        await client.logout(clear_keys=args.forget_keys)
        print("[*] Logged out.")


def main():
    parser = argparse.ArgumentParser(description="End-to-end encrypted chat client")
    parser.add_argument("--user", required=True, help="Your username")
    parser.add_argument("--password", required=True, help="Your password")
    parser.add_argument("--peer", required=True, help="Who to chat with")
    parser.add_argument("--register", action="store_true", help="Register before logging in")
    parser.add_argument("--interval", type=float, default=None, help="Polling interval in seconds")
    parser.add_argument("--forget-keys", action="store_true", help="Wipe local session keys on exit")
    args = parser.parse_args()

    logging.basicConfig(
        level=load_settings().log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        asyncio.run(run_cli(args))
    except ChatError as e:
        print(f"[!] {e}")


if __name__ == "__main__":
    main()

# scripts/demo_exchange.py
import argparse
import asyncio
import logging

from e2echat.client import ChatClient
from e2echat.common.config import Settings
from e2echat.storage.directory import InMemoryDirectory
from e2echat.storage.keystore import MemoryKeyStore


def _keystores():
    stores = {}
    return lambda owner: stores.setdefault(owner, MemoryKeyStore())


async def run_demo(text: str, key_size: int):
    directory = InMemoryDirectory()
    settings = Settings(rsa_key_size=key_size)
    alice = ChatClient(directory, _keystores(), settings)
    bob = ChatClient(directory, _keystores(), settings)

    # 1) Register + log in both sides (key pairs generated, public keys published)
    await alice.register("alice", "alice-pass")
    await bob.register("bob", "bob-pass")
    await alice.login("alice", "alice-pass")
    await bob.login("bob", "bob-pass")
    print(f"[+] Online users seen by alice: {await alice.list_online_users()}")

    # 2) alice -> bob: no key yet, so alice generates one and wraps it for bob
    msg_id = await alice.send_message("bob", text)
    print(f"[+] alice sent message {msg_id}; key state = {alice.coordinator.state('bob').value}")

    # 3) bob polls: unwraps the directed key record and opens the envelope
    for m in await bob.fetch_conversation("alice"):
        flag = "verified" if m.verified else "UNVERIFIED"
        print(f"[+] bob read from {m.sender}: {m.display_text!r} ({flag})")

    same = alice.coordinator.cache.get("bob") == bob.coordinator.cache.get("alice")
    print(f"[+] Session keys identical on both sides: {same}")

    await alice.logout()
    await bob.logout()
    print(f"[*] Online after logout: {await directory.list_reachable_identities()}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run the alice/bob key exchange end to end")
    parser.add_argument("--text", default="hello", help="Message alice sends to bob")
    parser.add_argument("--key-size", type=int, default=2048, help="RSA modulus size")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show library logging")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING)
    asyncio.run(run_demo(args.text, args.key_size))

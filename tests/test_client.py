# tests/test_client.py
import asyncio

import pytest

from e2echat.client import ChatClient
from e2echat.common.errors import (
    AuthenticationError,
    DirectoryUnavailable,
    NotLoggedIn,
    PeerUnreachable,
    RegistrationError,
)
from e2echat.crypto import envelope
from e2echat.crypto.digest import digest
from e2echat.storage.directory import InMemoryDirectory


async def _two_users(directory, keystores, settings):
    alice = ChatClient(directory, keystores, settings)
    bob = ChatClient(directory, keystores, settings)
    await alice.register("alice", "alice-password")
    await bob.register("bob", "bob-password")
    await alice.login("alice", "alice-password")
    await bob.login("bob", "bob-password")
    return alice, bob


def test_hello_scenario(keystores, settings):
    async def scenario():
        directory = InMemoryDirectory()
        alice, bob = await _two_users(directory, keystores, settings)
        assert await alice.list_online_users() == ["bob"]

        await alice.send_message("bob", "hello")
        await directory.get_directed_key("alice", "bob")

        [msg] = await bob.fetch_conversation("alice")
        assert msg.sender == "alice"
        assert msg.content == "hello"
        assert msg.verified is True
        assert bob.coordinator.cache.get("alice") == alice.coordinator.cache.get("bob")

        await bob.send_message("alice", "hi alice")
        conversation = await alice.fetch_conversation("bob")
        assert [m.content for m in conversation] == ["hello", "hi alice"]
        assert all(m.verified for m in conversation)

    asyncio.run(scenario())


def test_empty_conversation_does_not_create_key(keystores, settings):
    async def scenario():
        directory = InMemoryDirectory()
        alice, _ = await _two_users(directory, keystores, settings)
        assert await alice.fetch_conversation("bob") == []
        assert len(alice.coordinator.cache) == 0

    asyncio.run(scenario())


def test_undecryptable_and_unverified_messages_do_not_break_fetch(keystores, settings):
    async def scenario():
        directory = InMemoryDirectory()
        alice, bob = await _two_users(directory, keystores, settings)
        await alice.send_message("bob", "first")
        key = alice.coordinator.cache.get("bob")

        await directory.put_message("alice", "bob", "garbage", digest("x"))
        env, _ = envelope.seal("digest lies", key)
        await directory.put_message("alice", "bob", env, digest("something else"))

        first, broken, unverified = await bob.fetch_conversation("alice")
        assert first.content == "first" and first.verified
        assert broken.status == "undecryptable"
        assert broken.display_text == "[Decryption failed]"
        assert unverified.content == "digest lies" and not unverified.verified

    asyncio.run(scenario())


def test_logout_makes_user_unreachable(keystores, settings):
    async def scenario():
        directory = InMemoryDirectory()
        alice, bob = await _two_users(directory, keystores, settings)
        await bob.logout()

        assert await alice.list_online_users() == []
        with pytest.raises(PeerUnreachable):
            await alice.send_message("bob", "are you there?")
        with pytest.raises(NotLoggedIn):
            await bob.send_message("alice", "hi")
        assert bob.identity is None

    asyncio.run(scenario())


def test_relogin_keeps_conversation_readable(keystores, settings):
    async def scenario():
        directory = InMemoryDirectory()
        alice, bob = await _two_users(directory, keystores, settings)
        await alice.send_message("bob", "before")
        assert (await bob.fetch_conversation("alice"))[0].content == "before"

        # keystore survives logout, so the new key pair is not needed for old messages
        await bob.logout()
        await bob.login("bob", "bob-password")
        await alice.send_message("bob", "after")
        assert [m.content for m in await bob.fetch_conversation("alice")] == ["before", "after"]

    asyncio.run(scenario())


def test_logout_with_clear_keys(keystores, settings):
    async def scenario():
        directory = InMemoryDirectory()
        alice, _ = await _two_users(directory, keystores, settings)
        await alice.send_message("bob", "hello")
        store = keystores("alice")
        assert store.get("alice:bob") is not None

        await alice.logout(clear_keys=True)
        assert store.get("alice:bob") is None

    asyncio.run(scenario())


def test_login_rejects_bad_password(keystores, settings):
    async def scenario():
        directory = InMemoryDirectory()
        client = ChatClient(directory, keystores, settings)
        await client.register("carol", "carol-password")
        with pytest.raises(AuthenticationError):
            await client.login("carol", "wrong-password")
        with pytest.raises(AuthenticationError):
            await client.login("nobody", "whatever")
        assert await directory.list_reachable_identities() == []

    asyncio.run(scenario())


@pytest.mark.parametrize(
    "username,password",
    [("ab", "longenough"), ("carol", "short"), ("", "longenough")],
)
def test_register_validation(keystores, settings, username, password):
    client = ChatClient(InMemoryDirectory(), keystores, settings)
    with pytest.raises(RegistrationError):
        asyncio.run(client.register(username, password))


def test_register_duplicate(keystores, settings):
    async def scenario():
        client = ChatClient(InMemoryDirectory(), keystores, settings)
        await client.register("carol", "carol-password")
        with pytest.raises(RegistrationError):
            await client.register("carol", "other-password")

    asyncio.run(scenario())


def test_poll_delivers_new_messages_and_stops_on_logout(keystores, settings):
    async def scenario():
        directory = InMemoryDirectory()
        alice, bob = await _two_users(directory, keystores, settings)
        seen = []

        poller = bob.poll("alice", seen.append, interval=0.01).start()
        await alice.send_message("bob", "ping")
        for _ in range(100):
            if seen and seen[-1]:
                break
            await asyncio.sleep(0.01)
        assert seen[-1][0].content == "ping"

        await bob.logout()
        assert not poller.running

    asyncio.run(scenario())


def test_logout_after_poller_callback_fails(keystores, settings):
    async def scenario():
        directory = InMemoryDirectory()
        alice, bob = await _two_users(directory, keystores, settings)

        def broken_render(messages):
            raise RuntimeError("render failed")

        poller = bob.poll("alice", broken_render, interval=0.01).start()
        await alice.send_message("bob", "ping")
        for _ in range(100):
            if poller.ticks >= 3:
                break
            await asyncio.sleep(0.01)
        assert poller.running

        await bob.logout()
        assert bob.coordinator is None
        assert not poller.running
        assert await alice.list_online_users() == []

    asyncio.run(scenario())


def test_logout_during_outage_can_be_retried(keystores, settings):
    async def scenario():
        directory = InMemoryDirectory()
        alice, bob = await _two_users(directory, keystores, settings)
        await bob.send_message("alice", "hi")

        directory.available = False
        with pytest.raises(DirectoryUnavailable):
            await bob.logout()
        assert bob.coordinator is not None
        assert bob.username == "bob"
        assert bob.coordinator.cache.get("alice") is not None

        directory.available = True
        assert await alice.list_online_users() == ["bob"]
        await bob.logout()
        assert bob.coordinator is None
        assert await alice.list_online_users() == []

    asyncio.run(scenario())

"""Tests for bunker login, session restore and re-login policy."""

import asyncio

import pytest
from nostrsign.account import BunkerAccount
from nostrsign.bunker import BunkerInfo, create_bunker_url
from nostrsign.config import SignerConfig
from nostrsign.keys import KeyPair
from nostrsign.models import Event
from nostrsign.storage import InMemoryStore, SessionStore
from nostrsign.types import (
    DisconnectedError,
    InvalidBunkerUrlError,
    PermissionDeniedError,
    SignerError,
    TransportError,
)
from .fakes import FakeSigner, FakeTransport

RELAYS = ["wss://relay.one", "wss://relay.two"]


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def signer(transport):
    return FakeSigner(transport, RELAYS)


@pytest.fixture
def backend():
    return InMemoryStore()


def bunker_url(signer: FakeSigner, secret=None) -> str:
    return create_bunker_url(BunkerInfo(pubkey=signer.pubkey, relays=RELAYS, secret=secret))


def make_account(transport, backend) -> BunkerAccount:
    return BunkerAccount(transport, backend, config=SignerConfig.fast())


class TestLogin:
    def test_login_persists_credentials(self, transport, signer, backend) -> None:
        async def run():
            account = make_account(transport, backend)
            url = bunker_url(signer, secret="s3cr3t")

            assert await account.login(url) == signer.user_pubkey
            assert account.is_logged_in
            assert account.is_connected

            store = SessionStore(backend)
            assert await store.get_bunker_url() == url
            assert await store.get_bunker_user_pubkey() == signer.user_pubkey
            client_key = await store.get_client_private_key()
            assert KeyPair.from_private_key_hex(client_key).public_key_hex == signer.clients[0]
            assert signer.requests_for("connect")[0]["params"][1] == "s3cr3t"

        asyncio.run(run())

    def test_client_keypair_reused(self, transport, signer, backend) -> None:
        async def run():
            first = make_account(transport, backend)
            await first.login(bunker_url(signer))
            await first.logout()

            second = make_account(transport, backend)
            await second.login(bunker_url(signer))
            assert len(signer.clients) == 1

        asyncio.run(run())

    def test_invalid_stored_client_key_replaced(self, transport, signer) -> None:
        async def run():
            backend = InMemoryStore({"bunker_client_private_key": "00" * 32})
            account = make_account(transport, backend)

            assert await account.login(bunker_url(signer)) == signer.user_pubkey

            client_key = await SessionStore(backend).get_client_private_key()
            assert client_key != "00" * 32
            assert KeyPair.from_private_key_hex(client_key).public_key_hex == signer.clients[0]

        asyncio.run(run())

    def test_invalid_url(self, transport, backend) -> None:
        async def run():
            account = make_account(transport, backend)
            with pytest.raises(InvalidBunkerUrlError):
                await account.login("bunker://nope")
            assert not account.is_logged_in

        asyncio.run(run())

    def test_failed_login_stores_nothing(self, transport, signer, backend) -> None:
        async def run():
            signer.handlers["get_public_key"] = lambda request: [{"error": "nope"}]
            account = make_account(transport, backend)

            with pytest.raises(SignerError):
                await account.login(bunker_url(signer))

            assert not account.is_logged_in
            assert await SessionStore(backend).get_bunker_url() is None
            assert transport.open_sessions == []

        asyncio.run(run())


class TestRestore:
    """Test resuming a persisted login."""

    def test_nothing_to_restore(self, transport, backend) -> None:
        async def run():
            assert not await make_account(transport, backend).restore()

        asyncio.run(run())

    def test_restore(self, transport, signer, backend) -> None:
        async def run():
            await make_account(transport, backend).login(bunker_url(signer))

            account = make_account(transport, backend)
            assert await account.restore()
            assert account.user_pubkey == signer.user_pubkey
            assert account.is_connected
            assert len(signer.clients) == 1

        asyncio.run(run())

    def test_restore_updates_changed_pubkey(self, transport, signer, backend) -> None:
        async def run():
            store = SessionStore(backend)
            await store.save_bunker_url(bunker_url(signer))
            await store.save_bunker_user_pubkey(KeyPair.generate().public_key_hex)

            account = make_account(transport, backend)
            assert await account.restore()
            assert account.user_pubkey == signer.user_pubkey
            assert await store.get_bunker_user_pubkey() == signer.user_pubkey

        asyncio.run(run())

    def test_restore_keeps_saved_pubkey_when_unverified(self, transport, signer, backend) -> None:
        async def run():
            saved = KeyPair.generate().public_key_hex
            store = SessionStore(backend)
            await store.save_bunker_url(bunker_url(signer))
            await store.save_bunker_user_pubkey(saved)
            signer.handlers["get_public_key"] = lambda request: [{"error": "busy"}]

            account = make_account(transport, backend)
            assert await account.restore()
            assert account.user_pubkey == saved

        asyncio.run(run())

    def test_failed_restore_clears_credentials(self, transport, signer, backend) -> None:
        async def run():
            await make_account(transport, backend).login(bunker_url(signer))
            transport.unreachable.update(RELAYS)

            account = make_account(transport, backend)
            assert not await account.restore()
            assert not account.is_logged_in

            store = SessionStore(backend)
            assert await store.get_bunker_url() is None
            assert await store.get_bunker_user_pubkey() is None
            assert await store.get_client_private_key() is not None

        asyncio.run(run())


class TestSigning:
    """Test signing and the re-login policy."""

    def test_sign(self, transport, signer, backend) -> None:
        async def run():
            account = make_account(transport, backend)
            await account.login(bunker_url(signer))

            signed = await account.sign(Event(pubkey="", kind=1, content="hi", tags=[]))
            assert signed.pubkey == signer.user_pubkey
            assert signed.verify()

        asyncio.run(run())

    def test_sign_reconnects(self, transport, signer, backend) -> None:
        async def run():
            account = make_account(transport, backend)
            await account.login(bunker_url(signer))
            await account.session.disconnect()
            assert not account.is_connected

            signed = await account.sign(Event(pubkey="", kind=1, content="hi", tags=[]))
            assert signed.verify()
            assert account.is_connected
            assert len(signer.requests_for("connect")) == 2

        asyncio.run(run())

    def test_sign_recovers_after_relays_drop(self, transport, signer, backend) -> None:
        async def run():
            account = make_account(transport, backend)
            await account.login(bunker_url(signer))
            # Relays close every connection behind the session's back
            transport.handlers.clear()

            with pytest.raises(TransportError):
                await account.sign(Event(pubkey="", kind=1, content="hi", tags=[]))
            assert not account.is_connected
            assert account.is_logged_in

            signed = await account.sign(Event(pubkey="", kind=1, content="again", tags=[]))
            assert signed.verify()
            assert account.is_connected
            assert len(signer.requests_for("connect")) == 2
            assert len(signer.clients) == 1

        asyncio.run(run())

    def test_sign_without_login(self, transport, backend) -> None:
        async def run():
            account = make_account(transport, backend)
            assert not await account.ensure_connected()
            with pytest.raises(DisconnectedError):
                await account.sign(Event(pubkey="", kind=1, content="hi", tags=[]))

        asyncio.run(run())

    def test_reconnect_failure_keeps_credentials(self, transport, signer, backend) -> None:
        async def run():
            account = make_account(transport, backend)
            await account.login(bunker_url(signer))
            await account.session.disconnect()
            transport.unreachable.update(RELAYS)

            assert not await account.ensure_connected()
            assert await SessionStore(backend).get_bunker_url() is not None

        asyncio.run(run())

    def test_permission_denied_logs_out(self, transport, signer, backend) -> None:
        async def run():
            account = make_account(transport, backend)
            await account.login(bunker_url(signer))
            signer.handlers["sign_event"] = lambda request: [{"error": "No permission to sign kind 1"}]

            with pytest.raises(PermissionDeniedError):
                await account.sign(Event(pubkey="", kind=1, content="hi", tags=[]))

            assert not account.is_logged_in
            assert account.session is None
            store = SessionStore(backend)
            assert await store.get_bunker_url() is None
            assert await store.get_client_private_key() is not None

        asyncio.run(run())

    def test_challenges_require_session(self, transport, backend) -> None:
        async def run():
            account = make_account(transport, backend)
            with pytest.raises(DisconnectedError):
                await account.next_auth_challenge(timeout=0.01)

        asyncio.run(run())


class TestLogout:
    def test_logout(self, transport, signer, backend) -> None:
        async def run():
            account = make_account(transport, backend)
            await account.login(bunker_url(signer))
            await account.logout()

            assert not account.is_logged_in
            assert not account.is_connected
            assert transport.open_sessions == []
            assert await SessionStore(backend).get_client_private_key() is not None

        asyncio.run(run())

    def test_forget(self, transport, signer, backend) -> None:
        async def run():
            account = make_account(transport, backend)
            await account.login(bunker_url(signer))
            await account.forget()

            assert await backend.keys() == []

        asyncio.run(run())

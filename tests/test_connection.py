"""
Tests for IMAP connection management

Tests cover:
- Connecting, session reuse and configuration errors
- Disconnect semantics
- Reconnect backoff, give-up and reset
- The throwaway connection test
"""
import asyncio

import pytest

from mailsync.core.email.imap.connection import (
    ConnectionState,
    ConnectionTestParams,
)
from mailsync.utils.errors import (
    CredentialDecryptionError,
    InvalidConfigError,
    MissingCredentialsError,
    UnknownAccountError,
)


class TestConnect:
    """Tests for establishing sessions"""

    @pytest.mark.asyncio
    async def test_connect_success(self, connections, account, server):
        """Test a successful login stores the session"""
        assert await connections.connect(account.id) is True

        assert connections.is_connected(account.id)
        assert connections.connected_accounts() == [account.id]
        assert connections.state(account.id) == ConnectionState.CONNECTED
        assert server.client.calls[0] == ("login", "alice@example.com")
        assert server.client.kwargs["host"] == "imap.example.com"
        assert server.client.kwargs["use_tls"] is True

    @pytest.mark.asyncio
    async def test_connect_reuses_live_session(self, connections, account, server):
        """Test a second connect keeps the existing session"""
        await connections.connect(account.id)
        session = connections.get_session(account.id)

        assert await connections.connect(account.id) is True
        assert connections.get_session(account.id) is session
        assert len(server.clients) == 1

    @pytest.mark.asyncio
    async def test_wrong_password_returns_false(self, connections, account, server):
        server.password = "different"

        assert await connections.connect(account.id) is False
        assert not connections.is_connected(account.id)
        assert server.client.logged_out

    @pytest.mark.asyncio
    async def test_network_error_returns_false(self, connections, account, server):
        server.hello_error = OSError("Connection refused")
        assert await connections.connect(account.id) is False

    @pytest.mark.asyncio
    async def test_greeting_timeout_returns_false(self, connections, account, server, sync_config):
        sync_config.connect_timeout = 0.05
        server.hello_delay = 1.0
        assert await connections.connect(account.id) is False

    @pytest.mark.asyncio
    async def test_unknown_account_raises(self, connections):
        with pytest.raises(UnknownAccountError):
            await connections.connect("nope")

    @pytest.mark.asyncio
    async def test_missing_password_raises(self, connections, store):
        account = await store.accounts.add("x@example.com", None, imap_host="h")
        with pytest.raises(MissingCredentialsError):
            await connections.connect(account.id)

    @pytest.mark.asyncio
    async def test_undecryptable_password_raises(self, connections, store):
        account = await store.accounts.add("y@example.com", "not-a-token", imap_host="h")
        with pytest.raises(CredentialDecryptionError):
            await connections.connect(account.id)

    @pytest.mark.asyncio
    async def test_missing_host_raises(self, connections, store, secrets):
        blob = await secrets.encrypt("pw")
        account = await store.accounts.add("z@example.com", blob)
        with pytest.raises(InvalidConfigError):
            await connections.connect(account.id)

    @pytest.mark.asyncio
    async def test_on_connected_hook(self, connections, account):
        seen = []

        async def hook(account_id):
            seen.append(account_id)

        connections.on_connected = hook
        await connections.connect(account.id)
        assert seen == [account.id]


class TestDisconnect:
    """Tests for tearing sessions down"""

    @pytest.mark.asyncio
    async def test_disconnect_logs_out(self, connected, account, server):
        client = server.client
        await connected.disconnect(account.id)

        assert client.logged_out
        assert not connected.is_connected(account.id)
        assert connected.state(account.id) == ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_disconnect_when_not_connected(self, connections):
        await connections.disconnect("never-connected")

    @pytest.mark.asyncio
    async def test_disconnect_during_connect_wins(self, connections, account, server):
        """Test a connect still waiting on the greeting does not outlive disconnect"""
        server.hello_delay = 0.2
        task = asyncio.create_task(connections.connect(account.id))
        await asyncio.sleep(0.05)

        await connections.disconnect(account.id)

        assert await task is False
        assert not connections.is_connected(account.id)
        assert connections.state(account.id) == ConnectionState.DISCONNECTED
        assert server.client.logged_out

    @pytest.mark.asyncio
    async def test_disconnect_cancels_pending_reconnect(self, connections, account, timers):
        connections.schedule_reconnect(account.id)
        assert timers.is_pending(account.id)

        await connections.disconnect(account.id)

        assert not timers.is_pending(account.id)
        assert connections.retry_count(account.id) == 0

    @pytest.mark.asyncio
    async def test_deliberate_close_does_not_reconnect(self, connected, account, server, timers):
        """Test the lost-connection callback of a disconnected client is ignored"""
        client = server.client
        await connected.disconnect(account.id)

        client.lose_connection()

        assert timers.armed == []

    @pytest.mark.asyncio
    async def test_disconnect_all(self, connected, account, store, secrets, server):
        blob = await secrets.encrypt(server.password)
        other = await store.accounts.add("bob@example.com", blob, imap_host="imap.example.com")
        await connected.connect(other.id)

        await connected.disconnect_all()

        assert connected.connected_accounts() == []


class TestReconnect:
    """Tests for the reconnect policy"""

    @pytest.mark.asyncio
    async def test_connection_lost_schedules_reconnect(self, connected, account, server, timers):
        server.client.lose_connection(ConnectionResetError("reset"))

        assert not connected.is_connected(account.id)
        assert connected.state(account.id) == ConnectionState.RECONNECTING
        assert timers.armed == [(account.id, 1.0)]

    @pytest.mark.asyncio
    async def test_backoff_sequence_and_give_up(self, connections, account, server, timers):
        """Test delays double per failure and stop after five attempts"""
        server.password = "rotated"
        connections.schedule_reconnect(account.id)
        while timers.is_pending(account.id):
            await timers.fire(account.id)

        assert [delay for _, delay in timers.armed] == [1.0, 2.0, 4.0, 8.0, 16.0]
        assert connections.retry_count(account.id) == 0
        assert connections.state(account.id) == ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_backoff_is_capped(self, connections, account, timers, sync_config):
        sync_config.max_reconnect_attempts = 8
        delays = [connections.schedule_reconnect(account.id) for _ in range(8)]
        assert delays == [1.0, 2.0, 4.0, 8.0, 16.0, 30.0, 30.0, 30.0]
        assert connections.schedule_reconnect(account.id) is None

    @pytest.mark.asyncio
    async def test_successful_reconnect_resets_counter(self, connections, account, server, timers):
        server.password = "rotated"
        connections.schedule_reconnect(account.id)
        await timers.fire(account.id)
        assert connections.retry_count(account.id) == 2

        server.password = "secret"
        await timers.fire(account.id)

        assert connections.is_connected(account.id)
        assert connections.retry_count(account.id) == 0
        assert not timers.is_pending(account.id)

        # a later loss starts again from the base delay
        server.client.lose_connection()
        assert timers.armed[-1] == (account.id, 1.0)
        await connections.disconnect_all()

    @pytest.mark.asyncio
    async def test_timer_after_disconnect_is_noop(self, connections, account, server, timers):
        connections.schedule_reconnect(account.id)
        _delay, callback = timers.jobs[account.id]
        await connections.disconnect(account.id)

        await callback(account.id)

        assert not connections.is_connected(account.id)
        assert server.clients == []


class TestConnectionCheck:
    """Tests for test_connection"""

    @pytest.mark.asyncio
    async def test_success(self, connections, server):
        result = await connections.test_connection(
            ConnectionTestParams(email="a@b.c", password="secret", host="imap.b.c")
        )
        assert result.success is True
        assert result.error is None
        assert server.client.logged_out
        assert connections.connected_accounts() == []

    @pytest.mark.asyncio
    async def test_rejected_login_is_sanitized(self, connections, server):
        server.login_failure_text = '<script>alert("x")</script>\r\nbad & worse'
        result = await connections.test_connection(
            ConnectionTestParams(email="a@b.c", password="wrong", host="imap.b.c")
        )

        assert result.success is False
        assert result.error == "scriptalert(x)/script  bad  worse"

    @pytest.mark.asyncio
    async def test_timeout(self, connections, server):
        server.hello_delay = 5.0
        result = await connections.test_connection(
            ConnectionTestParams(email="a@b.c", password="secret", host="imap.b.c")
        )
        assert result.success is False
        assert result.error == "Connection timed out"

    @pytest.mark.asyncio
    async def test_plain_port_skips_tls(self, connections, server):
        await connections.test_connection(
            ConnectionTestParams(email="a@b.c", password="secret", host="h", port=143)
        )
        assert server.client.kwargs["use_tls"] is False

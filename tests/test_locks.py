"""
Tests for mailbox and connection locking
"""
import asyncio

import pytest

from mailsync.core.email.imap.locks import MailboxLocks


class TestMailboxLocks:
    """Tests for MailboxLocks"""

    @pytest.mark.asyncio
    async def test_hold_takes_both_locks(self):
        locks = MailboxLocks()

        async with locks.hold("a1", "INBOX"):
            assert locks.mailbox_lock("a1", "INBOX").locked()
            assert locks.connection_lock("a1").locked()
            assert not locks.mailbox_lock("a1", "Sent").locked()
            assert not locks.connection_lock("a2").locked()

        assert not locks.mailbox_lock("a1", "INBOX").locked()
        assert not locks.connection_lock("a1").locked()

    @pytest.mark.asyncio
    async def test_released_on_error(self):
        locks = MailboxLocks()

        with pytest.raises(RuntimeError):
            async with locks.hold("a1", "INBOX"):
                raise RuntimeError("boom")

        assert not locks.connection_lock("a1").locked()

    @pytest.mark.asyncio
    async def test_busy_lock_calls_interrupter(self):
        """Test a waiter asks the holder to yield"""
        locks = MailboxLocks()
        release = asyncio.Event()
        interrupted = []

        async def holder():
            async with locks.hold("a1", "INBOX"):
                locks.set_interrupter("a1", lambda: (interrupted.append(True), release.set()))
                await release.wait()
                locks.clear_interrupter("a1")

        task = asyncio.create_task(holder())
        await asyncio.sleep(0)

        async with locks.hold("a1", "Sent"):
            pass

        await task
        assert interrupted == [True]

    @pytest.mark.asyncio
    async def test_interrupt_without_interrupter(self):
        locks = MailboxLocks()
        locks.interrupt("a1")

    def test_clear_only_matching_interrupter(self):
        locks = MailboxLocks()
        calls = []

        def first():
            calls.append("first")

        def second():
            calls.append("second")

        locks.set_interrupter("a1", first)
        locks.set_interrupter("a1", second)
        locks.clear_interrupter("a1", first)
        locks.interrupt("a1")
        assert calls == ["second"]

        locks.forget("a1")
        locks.interrupt("a1")
        assert calls == ["second"]

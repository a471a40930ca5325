"""
Tests for paginated transaction history.
"""
import pytest

from coin_ledger.utils.exceptions import InsufficientFunds


async def _account_with_history(ledger, account_factory, transfers: int = 5):
    """Account whose history holds its signup bonus followed by ``transfers`` outgoing transfers."""
    sender = await account_factory()
    sent = []
    for i in range(transfers):
        recipient = await account_factory()
        sent.append(await ledger.transfer(sender.account_id, recipient.account_id, i + 1))
    return sender, sent


class TestTransactionHistory:

    @pytest.mark.asyncio
    async def test_newest_first_by_default(self, ledger, account_factory):
        sender, sent = await _account_with_history(ledger, account_factory, transfers=3)

        history = await ledger.get_transaction_history(sender.account_id)
        transactions = await history.all()

        assert [t.transaction_id for t in transactions[:3]] == [t.transaction_id for t in reversed(sent)]
        assert transactions[-1].type == "signup_bonus"

    @pytest.mark.asyncio
    async def test_pages_follow_cursor(self, ledger, account_factory):
        sender, sent = await _account_with_history(ledger, account_factory, transfers=5)

        history = await ledger.get_transaction_history(sender.account_id, page_size=2, order="asc")
        first = await history.fetch_page()
        second = await history.fetch_page(first.next_cursor)

        assert first.transactions[0].type == "signup_bonus"
        assert first.transactions[1].transaction_id == sent[0].transaction_id
        assert [t.transaction_id for t in second.transactions] == [sent[1].transaction_id, sent[2].transaction_id]
        assert second.next_cursor is not None

    @pytest.mark.asyncio
    async def test_last_page_has_no_cursor(self, ledger, account_factory):
        sender, _ = await _account_with_history(ledger, account_factory, transfers=3)

        history = await ledger.get_transaction_history(sender.account_id, page_size=4)
        pages = [page async for page in history]

        assert len(pages) == 1
        assert pages[0].next_cursor is None
        assert len(pages[0].transactions) == 4

    @pytest.mark.asyncio
    async def test_resume_from_cursor(self, ledger, account_factory):
        sender, sent = await _account_with_history(ledger, account_factory, transfers=4)
        first = await (await ledger.get_transaction_history(sender.account_id, page_size=2)).fetch_page()

        resumed = await ledger.get_transaction_history(sender.account_id, page_size=2, cursor=first.next_cursor)
        rest = await resumed.all()

        assert len(rest) == 3
        assert [t.transaction_id for t in rest[:2]] == [sent[1].transaction_id, sent[0].transaction_id]
        assert rest[-1].type == "signup_bonus"

    @pytest.mark.asyncio
    async def test_iteration_is_restartable(self, ledger, account_factory):
        sender, _ = await _account_with_history(ledger, account_factory, transfers=5)
        history = await ledger.get_transaction_history(sender.account_id, page_size=2)

        first_pass = [t.transaction_id for t in await history.all()]
        second_pass = [t.transaction_id for t in await history.all()]

        assert len(first_pass) == 6
        assert first_pass == second_pass

    @pytest.mark.asyncio
    async def test_includes_received_and_failed(self, ledger, account_factory):
        account = await account_factory(balance=10)
        other = await account_factory()
        received = await ledger.transfer(other.account_id, account.account_id, 5)
        with pytest.raises(InsufficientFunds) as exc_info:
            await ledger.transfer(account.account_id, other.account_id, 500)

        transactions = await (await ledger.get_transaction_history(account.account_id)).all()
        by_id = {t.transaction_id: t for t in transactions}

        assert received.transaction_id in by_id
        assert by_id[exc_info.value.transaction_id].status == "failed"

    @pytest.mark.asyncio
    async def test_other_accounts_are_excluded(self, ledger, account_factory):
        account = await account_factory()
        stranger, _ = await _account_with_history(ledger, account_factory, transfers=2)

        transactions = await (await ledger.get_transaction_history(account.account_id)).all()

        assert [t.type for t in transactions] == ["signup_bonus"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("kwargs", [
        {"order": "sideways"},
        {"page_size": 0},
        {"page_size": 201},
        {"cursor": "not-a-cursor"},
    ])
    async def test_invalid_arguments(self, ledger, account_factory, kwargs):
        account = await account_factory()
        with pytest.raises(ValueError):
            await ledger.get_transaction_history(account.account_id, **kwargs)

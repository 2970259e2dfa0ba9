"""
Test suite for the custodial ledger

Tests deposit and withdrawal state transitions, the capacity and
withdrawal-limit checks, all-or-nothing rollback when the transfer fails,
and rejection of re-entrant calls made from inside a transfer.
CRITICAL: sum of balances must equal the aggregate balance in every state.
"""

import json

import httpx
import pytest
from unittest.mock import Mock

from custodial_vault.errors import (
    CapacityExceeded, InsufficientBalance, InvalidAmount, InvalidConfiguration,
    LedgerIntegrityError, LimitExceeded, ReentrancyDetected, TransferFailed,
    ZeroAmount
)
from custodial_vault.events import EventDispatcher, EventLog, VaultEvent
from custodial_vault.guard import ReentrancyGuard
from custodial_vault.ledger import (
    CustodialLedger, DepositReceipt, UserStatistics, VaultStatistics,
    WithdrawalReceipt
)
from custodial_vault.storage import AGGREGATE, BALANCES, TOTALS, InMemoryStore, SQLiteStore
from custodial_vault.transfer import HttpPayoutTransfer, RecordingTransfer


def make_ledger(withdrawal_limit=10, bank_cap=100, store=None, transfer=None):
    transfer = transfer or RecordingTransfer()
    dispatcher = EventDispatcher()
    ledger = CustodialLedger(
        withdrawal_limit=withdrawal_limit,
        bank_cap=bank_cap,
        transfer=transfer,
        store=store,
        event_dispatcher=dispatcher
    )
    return ledger, transfer, EventLog().attach(dispatcher)


def snapshot(ledger):
    """Every table of the ledger's store"""
    return {table: ledger.store.items(table)
            for table in ("balances", "deposit_counts", "withdrawal_counts", "totals")}


class TestConstruction:
    """Test construction-time validation of the limits"""

    def test_valid_construction(self):
        """Test ledger exposes the limits it was built with"""
        ledger, _, _ = make_ledger(withdrawal_limit=1, bank_cap=10)

        assert ledger.withdrawal_limit == 1
        assert ledger.bank_cap == 10
        assert ledger.total_balance == 0
        assert ledger.accounts() == []

    def test_zero_withdrawal_limit_rejected(self):
        """Test construction fails with withdrawal limit of zero"""
        with pytest.raises(InvalidConfiguration) as exc_info:
            CustodialLedger(withdrawal_limit=0, bank_cap=10, transfer=RecordingTransfer())

        assert exc_info.value.field == "withdrawal_limit"

    def test_zero_bank_cap_rejected(self):
        """Test construction fails with capacity of zero"""
        with pytest.raises(InvalidConfiguration) as exc_info:
            CustodialLedger(withdrawal_limit=1, bank_cap=0, transfer=RecordingTransfer())

        assert exc_info.value.field == "bank_cap"

    def test_zero_limit_leaves_store_untouched(self):
        """Test a failed construction writes nothing to a supplied store"""
        store = InMemoryStore()

        with pytest.raises(InvalidConfiguration):
            CustodialLedger(withdrawal_limit=0, bank_cap=0, transfer=RecordingTransfer(), store=store)

        assert all(not values for values in store.get_all_data().values())

    @pytest.mark.parametrize("value", [-1, 1.5, "10", True, None])
    def test_malformed_limits_rejected(self, value):
        """Test negative, fractional, string, bool and missing limits are rejected"""
        with pytest.raises(InvalidConfiguration):
            CustodialLedger(withdrawal_limit=value, bank_cap=10, transfer=RecordingTransfer())

    def test_from_config(self):
        """Test building a ledger from configuration"""
        config = Mock(withdrawal_limit=3, bank_cap=30)
        ledger = CustodialLedger.from_config(config, RecordingTransfer())

        assert ledger.withdrawal_limit == 3
        assert ledger.bank_cap == 30


class TestDeposit:
    """Test deposit validation and bookkeeping"""

    def setup_method(self):
        """Set up test fixtures"""
        self.ledger, self.transfer, self.events = make_ledger(withdrawal_limit=1, bank_cap=10)

    def test_scenario_a_capacity(self):
        """Test deposits up to the cap and rejection of the one that overflows it"""
        receipt = self.ledger.deposit("alice", 5)

        assert receipt == DepositReceipt(account="alice", amount=5, new_balance=5)
        assert self.ledger.get_balance("alice") == 5
        assert self.ledger.total_balance == 5
        assert self.ledger.get_user_statistics("alice").deposit_count == 1

        before = snapshot(self.ledger)
        with pytest.raises(CapacityExceeded) as exc_info:
            self.ledger.deposit("alice", 6)

        assert exc_info.value.would_be_total == 11
        assert exc_info.value.cap == 10
        assert snapshot(self.ledger) == before

    def test_deposit_exactly_to_cap(self):
        """Test the cap itself is reachable"""
        self.ledger.deposit("alice", 4)
        self.ledger.deposit("bob", 6)

        assert self.ledger.total_balance == 10
        assert self.ledger.remaining_capacity() == 0
        assert not self.ledger.is_deposit_allowed(1)
        assert self.ledger.is_deposit_allowed(0)

    def test_zero_deposit_rejected(self):
        """Test deposit with no value attached"""
        with pytest.raises(ZeroAmount):
            self.ledger.deposit("alice", 0)

        assert self.ledger.get_vault_statistics().deposit_count == 0
        assert self.ledger.accounts() == []

    @pytest.mark.parametrize("amount", [-5, 2.5, "3", False])
    def test_malformed_deposit_rejected(self, amount):
        """Test deposits that are not non-negative integers"""
        with pytest.raises(InvalidAmount):
            self.ledger.deposit("alice", amount)

        assert self.ledger.total_balance == 0

    def test_scenario_d_two_depositors(self):
        """Test sequential deposits by different accounts"""
        self.ledger.deposit("alice", 3)
        self.ledger.deposit("bob", 4)

        assert self.ledger.total_balance == 7
        assert self.ledger.get_balance("alice") == 3
        assert self.ledger.get_balance("bob") == 4
        assert self.ledger.get_vault_statistics() == VaultStatistics(
            total_balance=7, deposit_count=2, withdrawal_count=0
        )
        assert self.ledger.get_user_statistics("alice").deposit_count == 1
        assert self.ledger.get_user_statistics("bob").deposit_count == 1

    def test_deposit_publishes_event(self):
        """Test Deposited(account, amount, newBalance) is emitted"""
        self.ledger.deposit("alice", 2)
        self.ledger.deposit("alice", 3)

        deposits = self.events.of_type(VaultEvent.DEPOSITED)
        assert len(deposits) == 2
        assert deposits[1].account == "alice"
        assert deposits[1].data == {"amount": 3, "new_balance": 5}

    def test_rejected_deposit_publishes_nothing(self):
        """Test failed deposits emit no events"""
        with pytest.raises(CapacityExceeded):
            self.ledger.deposit("alice", 11)

        assert len(self.events) == 0

    def test_receive_is_treated_as_deposit(self):
        """Test unsolicited value transfers credit the sender like a deposit"""
        receipt = self.ledger.receive("carol", 4)

        assert receipt.new_balance == 4
        assert self.ledger.get_user_statistics("carol") == UserStatistics(
            balance=4, deposit_count=1, withdrawal_count=0
        )
        assert self.events.of_type(VaultEvent.DEPOSITED)[0].account == "carol"

    def test_receive_respects_cap(self):
        """Test unsolicited transfers go through the same capacity check"""
        with pytest.raises(CapacityExceeded):
            self.ledger.receive("carol", 11)

        with pytest.raises(ZeroAmount):
            self.ledger.receive("carol", 0)

    def test_deposit_does_not_call_transfer(self):
        """Test deposits never cross the transfer boundary"""
        self.ledger.deposit("alice", 5)

        assert self.transfer.attempts == 0


class TestWithdraw:
    """Test withdrawal validation, bookkeeping and transfer handling"""

    def setup_method(self):
        """Set up test fixtures"""
        self.ledger, self.transfer, self.events = make_ledger(withdrawal_limit=10, bank_cap=100)
        self.ledger.deposit("alice", 5)

    def test_successful_withdrawal(self):
        """Test withdrawal debits the account and sends the value"""
        receipt = self.ledger.withdraw("alice", 3)

        assert receipt == WithdrawalReceipt(account="alice", amount=3, remaining_balance=2)
        assert self.ledger.get_balance("alice") == 2
        assert self.ledger.total_balance == 2
        assert self.transfer.total_sent("alice") == 3
        assert self.ledger.get_user_statistics("alice").withdrawal_count == 1
        assert self.ledger.get_vault_statistics().withdrawal_count == 1

    def test_full_withdrawal_keeps_account(self):
        """Test an emptied account stays known with zero balance"""
        self.ledger.withdraw("alice", 5)

        assert self.ledger.get_balance("alice") == 0
        assert self.ledger.accounts() == ["alice"]
        assert self.ledger.get_user_statistics("alice") == UserStatistics(
            balance=0, deposit_count=1, withdrawal_count=1
        )

    def test_scenario_b_limit_exceeded(self):
        """Test withdrawal above the per-withdrawal limit"""
        ledger, transfer, _ = make_ledger(withdrawal_limit=1, bank_cap=10)
        ledger.deposit("alice", 5)

        with pytest.raises(LimitExceeded) as exc_info:
            ledger.withdraw("alice", 2)

        assert exc_info.value.amount == 2
        assert exc_info.value.limit == 1
        assert ledger.get_balance("alice") == 5
        assert transfer.attempts == 0

    def test_limit_applies_regardless_of_balance(self):
        """Test a rich account still cannot move more than the limit at once"""
        self.ledger.deposit("alice", 50)

        with pytest.raises(LimitExceeded):
            self.ledger.withdraw("alice", 11)

        assert self.ledger.max_withdrawal("alice") == 10
        self.ledger.withdraw("alice", 10)
        assert self.transfer.payouts[-1].amount == 10

    def test_insufficient_balance(self):
        """Test withdrawal above the caller's balance"""
        with pytest.raises(InsufficientBalance) as exc_info:
            self.ledger.withdraw("alice", 6)

        assert exc_info.value.amount == 6
        assert exc_info.value.available == 5

    def test_unknown_account_has_nothing(self):
        """Test accounts with no history cannot withdraw"""
        with pytest.raises(InsufficientBalance) as exc_info:
            self.ledger.withdraw("mallory", 1)

        assert exc_info.value.available == 0
        assert "mallory" not in self.ledger.accounts()

    def test_zero_withdrawal_rejected(self):
        """Test withdrawal of nothing"""
        with pytest.raises(ZeroAmount):
            self.ledger.withdraw("alice", 0)

    def test_negative_withdrawal_rejected(self):
        """Test negative withdrawal amounts"""
        with pytest.raises(InvalidAmount):
            self.ledger.withdraw("alice", -1)

        assert self.ledger.get_balance("alice") == 5

    def test_scenario_c_transfer_failure_rolls_back(self):
        """Test a refused transfer restores balance, aggregate and counters"""
        ledger, transfer, events = make_ledger(withdrawal_limit=10, bank_cap=100)
        ledger.deposit("alice", 5)
        before = snapshot(ledger)
        transfer.fail_next()

        with pytest.raises(TransferFailed) as exc_info:
            ledger.withdraw("alice", 5)

        assert exc_info.value.destination == "alice"
        assert exc_info.value.amount == 5
        assert ledger.get_balance("alice") == 5
        assert ledger.total_balance == 5
        assert ledger.get_vault_statistics().withdrawal_count == 0
        assert ledger.get_user_statistics("alice").withdrawal_count == 0
        assert snapshot(ledger) == before
        assert events.of_type(VaultEvent.WITHDRAWN) == []
        assert not ledger.guard.locked

    def test_transfer_exception_rolls_back(self):
        """Test a transfer that raises is reported as TransferFailed"""
        before = snapshot(self.ledger)
        self.transfer.on_send = Mock(side_effect=ConnectionError("recipient unreachable"))

        with pytest.raises(TransferFailed) as exc_info:
            self.ledger.withdraw("alice", 2)

        assert isinstance(exc_info.value.__cause__, ConnectionError)
        assert "recipient unreachable" in exc_info.value.reason
        assert snapshot(self.ledger) == before
        assert not self.ledger.guard.locked

    def test_ledger_usable_after_failed_transfer(self):
        """Test a rolled-back withdrawal can be retried by the caller"""
        self.transfer.fail_next()
        with pytest.raises(TransferFailed):
            self.ledger.withdraw("alice", 2)

        self.ledger.withdraw("alice", 2)
        assert self.ledger.get_balance("alice") == 3
        assert self.transfer.attempts == 2
        assert len(self.transfer.payouts) == 1

    def test_effects_committed_before_transfer(self):
        """Test the transfer sees the post-withdrawal ledger state"""
        observed = {}

        def on_send(destination, amount):
            observed["balance"] = self.ledger.get_balance(destination)
            observed["aggregate"] = self.ledger.total_balance
            observed["withdrawals"] = self.ledger.get_vault_statistics().withdrawal_count

        self.transfer.on_send = on_send
        self.ledger.withdraw("alice", 4)

        assert observed == {"balance": 1, "aggregate": 1, "withdrawals": 1}

    def test_withdraw_publishes_event(self):
        """Test Withdrawn(account, amount, remainingBalance) is emitted"""
        self.ledger.withdraw("alice", 3)

        withdrawals = self.events.of_type(VaultEvent.WITHDRAWN)
        assert len(withdrawals) == 1
        assert withdrawals[0].data == {"amount": 3, "remaining_balance": 2}

    @pytest.mark.parametrize("error_amount", [0, 11, 6, -2])
    def test_failed_withdraw_leaves_state_identical(self, error_amount):
        """Test every rejected withdrawal leaves the ledger untouched"""
        before = snapshot(self.ledger)

        with pytest.raises(Exception):
            self.ledger.withdraw("alice", error_amount)

        assert snapshot(self.ledger) == before
        assert self.transfer.attempts == 0


class TestReentrancy:
    """Test calls made into the ledger from inside a transfer"""

    def setup_method(self):
        """Set up test fixtures"""
        self.ledger, self.transfer, self.events = make_ledger(withdrawal_limit=10, bank_cap=100)
        self.ledger.deposit("attacker", 6)

    def test_nested_withdraw_fails_outer_call(self):
        """Test an uncaught re-entry makes the transfer fail and rolls back"""
        before = snapshot(self.ledger)
        self.transfer.on_send = lambda destination, amount: self.ledger.withdraw(destination, amount)

        with pytest.raises(TransferFailed) as exc_info:
            self.ledger.withdraw("attacker", 3)

        assert isinstance(exc_info.value.__cause__, ReentrancyDetected)
        assert snapshot(self.ledger) == before
        assert self.transfer.payouts == []
        assert not self.ledger.guard.locked

    def test_swallowed_reentry_cannot_double_spend(self):
        """Test a recipient that swallows the rejection gets exactly one payout"""
        rejected = []

        def on_send(destination, amount):
            try:
                self.ledger.withdraw(destination, amount)
            except ReentrancyDetected as e:
                rejected.append(e)

        self.transfer.on_send = on_send
        self.ledger.withdraw("attacker", 3)

        assert len(rejected) == 1
        assert rejected[0].operation == "withdraw"
        assert self.ledger.get_balance("attacker") == 3
        assert self.ledger.total_balance == 3
        assert self.transfer.total_sent("attacker") == 3
        assert self.ledger.get_vault_statistics().withdrawal_count == 1
        self.ledger.verify_integrity()

    def test_nested_deposit_rejected(self):
        """Test a deposit attempted from inside a transfer is rejected"""
        rejected = []

        def on_send(destination, amount):
            try:
                self.ledger.deposit(destination, 50)
            except ReentrancyDetected as e:
                rejected.append(e)

        self.transfer.on_send = on_send
        self.ledger.withdraw("attacker", 2)

        assert [e.operation for e in rejected] == ["deposit"]
        assert self.ledger.get_balance("attacker") == 4
        assert self.ledger.get_vault_statistics().deposit_count == 1

    def test_nested_receive_rejected(self):
        """Test value pushed back into the vault during a transfer is rejected"""
        rejected = []

        def on_send(destination, amount):
            try:
                self.ledger.receive(destination, amount)
            except ReentrancyDetected as e:
                rejected.append(e)

        self.transfer.on_send = on_send
        self.ledger.withdraw("attacker", 2)

        assert len(rejected) == 1
        assert self.ledger.get_balance("attacker") == 4

    def test_reads_allowed_during_transfer(self):
        """Test pure reads are not guarded"""
        seen = []
        self.transfer.on_send = lambda destination, amount: seen.append(
            (self.ledger.get_balance(destination), self.ledger.is_deposit_allowed(1))
        )

        self.ledger.withdraw("attacker", 1)

        assert seen == [(5, True)]

    def test_guard_idle_after_every_outcome(self):
        """Test the guard is released after success and after each failure kind"""
        self.ledger.withdraw("attacker", 1)
        assert not self.ledger.guard.locked

        for amount in (0, 11, 100):
            with pytest.raises(Exception):
                self.ledger.withdraw("attacker", amount)
            assert not self.ledger.guard.locked

        self.transfer.fail_next()
        with pytest.raises(TransferFailed):
            self.ledger.withdraw("attacker", 1)
        assert not self.ledger.guard.locked

    def test_shared_guard_spans_ledgers(self):
        """Test a guard shared by two ledgers blocks cross-ledger re-entry"""
        guard = ReentrancyGuard()
        transfer = RecordingTransfer()
        first = CustodialLedger(10, 100, transfer, guard=guard)
        second = CustodialLedger(10, 100, RecordingTransfer(), guard=guard)
        first.deposit("alice", 5)
        transfer.on_send = lambda destination, amount: second.deposit(destination, amount)

        with pytest.raises(TransferFailed):
            first.withdraw("alice", 5)

        assert first.get_balance("alice") == 5
        assert second.get_balance("alice") == 0


class TestReads:
    """Test pure read projections"""

    def setup_method(self):
        """Set up test fixtures"""
        self.ledger, self.transfer, _ = make_ledger(withdrawal_limit=4, bank_cap=20)

    def test_unknown_account_reads_zero(self):
        """Test accounts without history read as zero everywhere"""
        assert self.ledger.get_balance("nobody") == 0
        assert self.ledger.get_user_statistics("nobody") == UserStatistics(0, 0, 0)
        assert self.ledger.max_withdrawal("nobody") == 0

    def test_vault_statistics(self):
        """Test vault-wide counters after a mix of operations"""
        self.ledger.deposit("alice", 6)
        self.ledger.deposit("bob", 2)
        self.ledger.withdraw("alice", 4)

        assert self.ledger.get_vault_statistics() == VaultStatistics(
            total_balance=4, deposit_count=2, withdrawal_count=1
        )
        assert self.ledger.remaining_capacity() == 16

    def test_is_deposit_allowed_matches_deposit(self):
        """Test the predicate agrees with what deposit actually accepts"""
        self.ledger.deposit("alice", 15)

        for amount in (1, 5, 6, 20):
            allowed = self.ledger.is_deposit_allowed(amount)
            try:
                self.ledger.deposit("dave", amount)
                accepted = True
                self.ledger.withdraw("dave", min(amount, 4))
                if amount > 4:
                    self.ledger.withdraw("dave", amount - 4)
            except CapacityExceeded:
                accepted = False
            assert allowed == accepted, amount

    def test_is_deposit_allowed_rejects_malformed(self):
        """Test the predicate validates its input"""
        with pytest.raises(InvalidAmount):
            self.ledger.is_deposit_allowed(-1)

    def test_reads_do_not_mutate(self):
        """Test read operations leave the state unchanged"""
        self.ledger.deposit("alice", 3)
        before = snapshot(self.ledger)

        self.ledger.get_balance("alice")
        self.ledger.get_balance("ghost")
        self.ledger.get_user_statistics("ghost")
        self.ledger.get_vault_statistics()
        self.ledger.is_deposit_allowed(100)

        assert snapshot(self.ledger) == before
        assert self.ledger.accounts() == ["alice"]


class TestIntegrity:
    """Test invariant checking over many operations"""

    def test_invariants_hold_through_mixed_sequence(self):
        """Test sum of balances equals aggregate after every operation"""
        ledger, transfer, _ = make_ledger(withdrawal_limit=3, bank_cap=25)
        operations = [
            ("deposit", "a", 10), ("deposit", "b", 7), ("withdraw", "a", 3),
            ("deposit", "c", 9), ("withdraw", "b", 4), ("deposit", "b", 1),
            ("withdraw", "a", 5), ("withdraw", "c", 3), ("deposit", "a", 6),
            ("withdraw", "b", 2),
        ]

        for index, (op, account, amount) in enumerate(operations):
            if index % 4 == 3:
                transfer.fail_next()
            try:
                getattr(ledger, op)(account, amount)
            except (CapacityExceeded, LimitExceeded, InsufficientBalance, TransferFailed):
                pass

            balances = ledger.store.items(BALANCES)
            assert sum(balances.values()) == ledger.total_balance
            assert 0 <= ledger.total_balance <= ledger.bank_cap
            assert ledger.verify_integrity()

        assert all(p.amount <= 3 for p in transfer.payouts)

    def test_detects_tampered_aggregate(self):
        """Test verify_integrity reports a mismatch between balances and aggregate"""
        ledger, _, _ = make_ledger()
        ledger.deposit("alice", 5)
        ledger.store.put(TOTALS, AGGREGATE, 7)

        with pytest.raises(LedgerIntegrityError) as exc_info:
            ledger.verify_integrity()

        assert exc_info.value.context["balance_sum"] == 5
        assert exc_info.value.context["aggregate"] == 7


class TestSQLiteBackedLedger:
    """Test the ledger on persistent storage"""

    def test_rollback_on_sqlite(self, tmp_path):
        """Test transfer failure rollback with the SQLite store"""
        store = SQLiteStore(tmp_path / "vault.db")
        ledger, transfer, _ = make_ledger(withdrawal_limit=10, bank_cap=100, store=store)
        ledger.deposit("alice", 8)
        before = snapshot(ledger)
        transfer.fail_next()

        with pytest.raises(TransferFailed):
            ledger.withdraw("alice", 8)

        assert snapshot(ledger) == before
        ledger.withdraw("alice", 8)
        assert ledger.get_balance("alice") == 0
        store.close()

    def test_state_survives_reopen(self, tmp_path):
        """Test balances and counters persist across store instances"""
        path = tmp_path / "vault.db"
        store = SQLiteStore(path)
        ledger, _, _ = make_ledger(store=store)
        ledger.deposit("alice", 9)
        ledger.withdraw("alice", 4)
        store.close()

        reopened, _, _ = make_ledger(store=SQLiteStore(path))
        assert reopened.get_balance("alice") == 5
        assert reopened.get_vault_statistics() == VaultStatistics(5, 1, 1)
        assert reopened.verify_integrity()
        reopened.store.close()

    def test_amounts_above_64_bits(self):
        """Test large native-unit amounts are stored exactly"""
        unit = 10 ** 18
        ledger, _, _ = make_ledger(withdrawal_limit=unit, bank_cap=100 * unit, store=SQLiteStore())
        ledger.deposit("whale", 99 * unit)

        assert ledger.get_balance("whale") == 99 * unit
        assert ledger.remaining_capacity() == unit


class TestHttpPayoutLedger:
    """Test withdrawals paid out through the payout service client"""

    def make(self, handler):
        transfer = HttpPayoutTransfer(
            "http://payouts.test",
            client=httpx.Client(transport=httpx.MockTransport(handler))
        )
        ledger, _, _ = make_ledger(withdrawal_limit=10, bank_cap=100, transfer=transfer)
        ledger.deposit("alice", 5)
        return ledger, transfer

    def test_timeout_after_payout_keeps_debit(self):
        """Test a payout the service carried out is never rolled back"""
        carried_out = []

        def handler(request):
            if request.method == "POST":
                carried_out.append(json.loads(request.content)["payout_id"])
                raise httpx.ReadTimeout("timed out", request=request)
            if request.url.path.endswith(carried_out[0]):
                return httpx.Response(200, json={"accepted": True})
            return httpx.Response(404)

        ledger, _ = self.make(handler)

        receipt = ledger.withdraw("alice", 5)

        assert receipt.remaining_balance == 0
        assert len(carried_out) == 1
        assert ledger.get_balance("alice") == 0
        assert ledger.verify_integrity()

    def test_unreachable_service_rolls_back(self):
        """Test a payout that never left is rolled back"""
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        ledger, _ = self.make(handler)

        with pytest.raises(TransferFailed):
            ledger.withdraw("alice", 5)

        assert ledger.get_balance("alice") == 5
        assert ledger.get_vault_statistics().withdrawal_count == 0

    def test_unresolved_payout_keeps_debit(self):
        """Test an unknown outcome keeps the debit and flags the payout"""
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        ledger, transfer = self.make(handler)

        ledger.withdraw("alice", 2)

        assert ledger.get_balance("alice") == 3
        assert [p.amount for p in transfer.unresolved] == [2]

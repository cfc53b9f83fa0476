import threading

import pytest
from solders.keypair import Keypair

from controllers.wallet_controller import WalletController
from repositories.state_repository import ConversationStateRepository
from services.credential_service import CredentialService
from utils.config import TradingConfig

from conftest import DESTINATION, TOKEN_A


class Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture(scope="module")
def real_credentials():
    return CredentialService(secret="test-secret")


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def wallets(users, trades, solana, real_credentials, clock):
    state = ConversationStateRepository(default_ttl=60, clock=clock)
    config = TradingConfig(max_users=2, rpc_retry_delay_ms=0, max_wallets_per_user=2)
    return WalletController(users, solana, real_credentials, state, config=config,
                            sleep=lambda s: None, trades=trades)


@pytest.fixture
def pinned_user(wallets):
    user = wallets.register("777")["user"]
    assert wallets.set_pin(user, "1234")["ok"]
    return wallets.get_user("777")


def test_register_is_idempotent_and_capped(wallets, real_credentials):
    first = wallets.register("1")
    again = wallets.register("1")

    assert first["status"] == "created"
    assert again["status"] == "existing"
    assert again["user"].id == first["user"].id
    # la clave guardada va cifrada y se puede recuperar
    secret = real_credentials.decrypt_private_key(first["user"].encrypted_private_key)
    assert secret and secret != first["user"].encrypted_private_key

    assert wallets.register("2")["status"] == "created"
    full = wallets.register("3")
    assert not full["ok"]
    assert full["status"] == "beta_full"


def test_set_pin_validation(wallets):
    user = wallets.register("9")["user"]

    assert not wallets.set_pin(user, "12a4")["ok"]
    assert not wallets.get_user("9").has_pin
    assert wallets.set_pin(user, "4321")["ok"]
    assert wallets.get_user("9").has_pin


def test_update_settings(wallets):
    user = wallets.register("9")["user"]

    updated = wallets.update_settings(user, auto_tp=False)
    assert updated.auto_tp_enabled is False
    assert updated.auto_sl_enabled is True


def test_request_withdrawal_validation(wallets):
    user = wallets.register("9")["user"]

    assert wallets.request_withdrawal(user, 0, DESTINATION)["reason"] == "Invalid withdrawal amount."
    assert wallets.request_withdrawal(user, 1, "nope")["reason"] == "Invalid destination address."
    assert "No PIN set" in wallets.request_withdrawal(user, 1, DESTINATION)["reason"]
    assert not wallets.has_pending_withdrawal("9")


def test_withdrawal_with_wrong_then_right_pin(wallets, pinned_user, solana):
    assert wallets.request_withdrawal(pinned_user, 0.5, DESTINATION)["ok"]
    assert wallets.has_pending_withdrawal("777")

    wrong = wallets.confirm_withdrawal(pinned_user, "9999")
    assert wrong["status"] == "invalid_pin"
    assert wallets.has_pending_withdrawal("777")

    done = wallets.confirm_withdrawal(pinned_user, " 1234 ")
    assert done["status"] == "sent"
    assert done["signature"] == "sig1"
    assert solana.transfers == [(DESTINATION, 0.5)]
    assert not wallets.has_pending_withdrawal("777")


def test_withdrawal_cancel(wallets, pinned_user, solana):
    wallets.request_withdrawal(pinned_user, 0.5, DESTINATION)

    assert wallets.confirm_withdrawal(pinned_user, "CANCEL")["status"] == "cancelled"
    assert wallets.confirm_withdrawal(pinned_user, "1234")["status"] == "none"
    assert solana.transfers == []


def test_withdrawal_expired(wallets, pinned_user, clock, solana):
    wallets.request_withdrawal(pinned_user, 0.5, DESTINATION)
    clock.now += 61

    assert wallets.has_pending_withdrawal("777")
    assert wallets.confirm_withdrawal(pinned_user, "1234")["status"] == "expired"
    assert not wallets.has_pending_withdrawal("777")
    assert solana.transfers == []


def test_withdrawal_insufficient_balance(wallets, pinned_user, solana):
    solana.balance = 0.5
    wallets.request_withdrawal(pinned_user, 0.5, DESTINATION)

    res = wallets.confirm_withdrawal(pinned_user, "1234")
    assert res["status"] == "insufficient"
    assert res["needed"] == pytest.approx(0.501)
    assert not wallets.has_pending_withdrawal("777")


def test_withdrawal_transfer_retries(wallets, pinned_user, solana):
    solana.submit_failures = 2
    wallets.request_withdrawal(pinned_user, 0.5, DESTINATION)

    res = wallets.confirm_withdrawal(pinned_user, "1234")
    assert res["status"] == "sent"
    assert solana.submits == 3
    assert len(solana.transfers) == 3


def test_withdrawal_transfer_gives_up(wallets, pinned_user, solana):
    solana.submit_failures = 5
    wallets.request_withdrawal(pinned_user, 0.5, DESTINATION)

    res = wallets.confirm_withdrawal(pinned_user, "1234")
    assert res["status"] == "failed"
    assert solana.submits == 3


def test_concurrent_confirmations_send_once(wallets, pinned_user, solana):
    wallets.request_withdrawal(pinned_user, 0.5, DESTINATION)
    barrier = threading.Barrier(2)
    statuses = []

    def confirm():
        barrier.wait()
        statuses.append(wallets.confirm_withdrawal(pinned_user, "1234")["status"])

    workers = [threading.Thread(target=confirm) for _ in range(2)]
    for t in workers:
        t.start()
    for t in workers:
        t.join(timeout=10)

    assert sorted(statuses) == ["none", "sent"]
    assert solana.transfers == [(DESTINATION, 0.5)]


# -------- gestor de wallets --------

def test_add_and_switch_wallet(wallets, pinned_user, real_credentials):
    added = wallets.add_wallet(pinned_user)
    assert added["status"] == "created"
    assert wallets.add_wallet(pinned_user)["status"] == "limit"

    switched = wallets.switch_wallet(pinned_user, 2)
    assert switched["status"] == "switched"
    user = wallets.get_user("777")
    assert user.wallet_address == added["wallet"].wallet_address
    secret = real_credentials.decrypt_private_key(user.encrypted_private_key)
    assert str(Keypair.from_base58_string(secret).pubkey()) == user.wallet_address

    assert wallets.switch_wallet(user, 2)["status"] == "unchanged"
    assert wallets.switch_wallet(user, 3)["status"] == "not_found"


def test_switch_blocked_with_open_positions(wallets, pinned_user, trades):
    wallets.add_wallet(pinned_user)
    trades.create_trade(pinned_user.id, TOKEN_A, 0.1, 0.5, 1)

    res = wallets.switch_wallet(pinned_user, 2)
    assert res["status"] == "open_positions"
    assert wallets.get_user("777").wallet_address == pinned_user.wallet_address


def test_remove_wallet_needs_confirmation(wallets, pinned_user):
    assert wallets.request_removal(pinned_user, 1)["status"] == "last"
    wallets.add_wallet(pinned_user)

    assert wallets.request_removal(pinned_user, 2)["status"] == "pending"
    assert wallets.has_pending_removal("777")
    assert wallets.confirm_removal(pinned_user, "nah")["status"] == "cancelled"
    assert len(wallets.list_wallets(pinned_user)) == 2

    wallets.request_removal(pinned_user, 2)
    assert wallets.confirm_removal(pinned_user, " Confirm ")["status"] == "removed"
    assert not wallets.has_pending_removal("777")
    assert len(wallets.list_wallets(pinned_user)) == 1


def test_remove_active_wallet_blocked_with_open_positions(wallets, pinned_user, trades):
    wallets.add_wallet(pinned_user)
    trades.create_trade(pinned_user.id, TOKEN_A, 0.1, 0.5, 1)

    assert wallets.request_removal(pinned_user, 1)["status"] == "open_positions"
    # la inactiva sí se puede borrar
    wallets.request_removal(pinned_user, 2)
    assert wallets.confirm_removal(pinned_user, "confirm")["status"] == "removed"


def test_pending_removal_expires(wallets, pinned_user, clock):
    wallets.add_wallet(pinned_user)
    wallets.request_removal(pinned_user, 2)
    clock.now += 61
    # caducado sigue contando como pendiente para poder avisar al usuario
    assert wallets.has_pending_removal("777")

    assert wallets.confirm_removal(pinned_user, "confirm")["status"] == "expired"
    assert len(wallets.list_wallets(pinned_user)) == 2


def test_export_key_with_pin(wallets, pinned_user, real_credentials):
    assert wallets.request_export(pinned_user)["ok"]
    assert wallets.awaiting_export_pin("777")

    res = wallets.confirm_export(pinned_user, "1234")
    assert res["status"] == "exported"
    assert str(Keypair.from_base58_string(res["private_key"]).pubkey()) == pinned_user.wallet_address
    assert not wallets.awaiting_export_pin("777")
    assert wallets.confirm_export(pinned_user, "1234")["status"] == "none"


def test_export_single_attempt(wallets, pinned_user):
    wallets.request_export(pinned_user)

    wrong = wallets.confirm_export(pinned_user, "0000")
    assert wrong["status"] == "invalid_pin"
    assert "private_key" not in wrong
    assert wallets.confirm_export(pinned_user, "1234")["status"] == "none"


def test_export_requires_pin(wallets):
    user = wallets.register("9")["user"]

    assert not wallets.request_export(user)["ok"]
    assert not wallets.awaiting_export_pin("9")

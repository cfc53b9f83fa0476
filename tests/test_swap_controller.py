import pytest

from controllers.swap_controller import SwapController
from enums.swap_failure import SwapFailure
from enums.trade_status import TradeStatus

from conftest import TOKEN_A, TOKEN_B


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def swaps(trades, prices, jupiter, solana, credentials, config, sleeps):
    return SwapController(trades, prices, jupiter, solana, credentials, config=config, sleep=sleeps.append)


@pytest.fixture
def identity(user):
    return user.identity()


# -------- validación --------

@pytest.mark.parametrize("amount", [0.0, 0.01, 0.0499])
def test_buy_below_minimum_rejected_before_io(swaps, identity, jupiter, amount):
    res = swaps.execute_buy(identity, TOKEN_A, amount)

    assert not res.success
    assert res.failure == SwapFailure.VALIDATION
    assert jupiter.quotes == []


def test_buy_invalid_token_and_slippage(swaps, identity, jupiter):
    assert swaps.execute_buy(identity, "not-an-address", 0.1).failure == SwapFailure.VALIDATION
    assert swaps.execute_buy(identity, TOKEN_A, 0.1, slippage_bps=5001).failure == SwapFailure.VALIDATION
    assert jupiter.quotes == []


@pytest.mark.parametrize("percent", [0, -5, 100.5, 150])
def test_sell_percent_bounds(swaps, identity, trades, jupiter, percent):
    trades.create_trade(identity.user_id, TOKEN_A, 1.0, 0.5, 1)
    res = swaps.execute_sell(identity, TOKEN_A, percent)

    assert res.failure == SwapFailure.VALIDATION
    assert jupiter.quotes == []


def test_slippage_accepts_zero_up_to_max(swaps, identity, jupiter):
    assert swaps.execute_buy(identity, TOKEN_A, 0.1, slippage_bps=0).success
    assert jupiter.quotes[-1][3] == 0
    assert swaps.execute_buy(identity, TOKEN_B, 0.1, slippage_bps=5000).success
    assert jupiter.quotes[-1][3] == 5000

    res = swaps.execute_buy(identity, TOKEN_B, 0.1, slippage_bps=-1)
    assert res.failure == SwapFailure.VALIDATION
    assert "between 0% and 50%" in res.error


def test_fractional_sell_percent(swaps, identity, trades, jupiter, solana):
    t = trades.create_trade(identity.user_id, TOKEN_A, 1.0, 0.5, 1_000_000)

    res = swaps.execute_sell(identity, TOKEN_A, 0.5)

    assert res.success and not res.closed
    assert jupiter.quotes[0][2] == 5_000
    assert trades.get_trade_by_id(t.id).amount_sol == pytest.approx(0.995)

    solana.token_balance.raw = 100
    dust = swaps.execute_sell(identity, TOKEN_A, 0.5)
    assert dust.failure == SwapFailure.VALIDATION
    assert len(jupiter.quotes) == 1


def test_buy_insufficient_balance(swaps, identity, solana, jupiter):
    solana.balance = 0.105
    res = swaps.execute_buy(identity, TOKEN_A, 0.1)

    assert res.failure == SwapFailure.INSUFFICIENT_BALANCE
    assert jupiter.quotes == []


def test_buy_with_open_position_rejected_before_swap(swaps, identity, trades, jupiter, solana):
    trades.create_trade(identity.user_id, TOKEN_A, 1.0, 0.5, 1)

    res = swaps.execute_buy(identity, TOKEN_A, 0.1)

    assert res.failure == SwapFailure.POSITION_EXISTS
    assert jupiter.quotes == []
    assert solana.submits == 0


# -------- compra --------

def test_buy_success_opens_trade(swaps, identity, prices, jupiter, solana, trades):
    prices.prices[TOKEN_A] = 0.00002
    jupiter.out_amount = 5_000_000

    res = swaps.execute_buy(identity, TOKEN_A, 0.1)

    assert res.success
    assert res.signature == "sig1"
    assert res.trade.entry_price == 0.00002
    assert res.trade.amount_sol == 0.1
    assert res.trade.token_amount == 5_000_000
    assert jupiter.quotes[0][2] == 100_000_000
    assert jupiter.quotes[0][3] == 2000
    assert trades.get_trade_by_token(identity.user_id, TOKEN_A).id == res.trade.id


def test_buy_without_price_records_zero_entry(swaps, identity):
    res = swaps.execute_buy(identity, TOKEN_A, 0.1)
    assert res.success
    assert res.trade.entry_price == 0.0


def test_quote_failure_not_retried(swaps, identity, jupiter, solana, sleeps):
    jupiter.quote_ok = False
    res = swaps.execute_buy(identity, TOKEN_A, 0.1)

    assert res.failure == SwapFailure.QUOTE
    assert len(jupiter.quotes) == 1
    assert solana.submits == 0
    assert sleeps == []


def test_build_failure_not_retried(swaps, identity, jupiter, solana):
    jupiter.build_ok = False
    res = swaps.execute_buy(identity, TOKEN_A, 0.1)

    assert res.failure == SwapFailure.BUILD
    assert jupiter.builds == 1
    assert solana.submits == 0


def test_submit_retried_until_success(swaps, identity, solana, sleeps, trades):
    solana.submit_failures = 2

    res = swaps.execute_buy(identity, TOKEN_A, 0.1)

    assert res.success
    assert solana.submits == 3
    assert sleeps == [1.0, 1.0]
    assert res.signature == "sig3"


def test_submit_retries_exhausted_returns_failure(swaps, identity, solana, sleeps, trades):
    solana.submit_failures = 3

    res = swaps.execute_buy(identity, TOKEN_A, 0.1)

    assert not res.success
    assert res.failure == SwapFailure.SUBMIT
    assert "attempt 3" in res.error
    assert solana.submits == 3
    assert len(sleeps) == 2
    assert trades.get_trade_by_token(identity.user_id, TOKEN_A) is None


def test_unexpected_error_never_escapes(swaps, identity, solana):
    def broken(address):
        raise RuntimeError("rpc down")
    solana.get_balance = broken

    res = swaps.execute_buy(identity, TOKEN_A, 0.1)

    assert not res.success
    assert res.failure == SwapFailure.INTERNAL


# -------- venta --------

def test_sell_requires_open_trade(swaps, identity):
    assert swaps.execute_sell(identity, TOKEN_A, 100).failure == SwapFailure.NO_OPEN_TRADE


def test_sell_requires_tokens(swaps, identity, trades, solana, jupiter):
    trades.create_trade(identity.user_id, TOKEN_A, 1.0, 0.5, 1)
    solana.token_balance.raw = 0

    assert swaps.execute_sell(identity, TOKEN_A, 100).failure == SwapFailure.NO_TOKENS
    assert jupiter.quotes == []


def test_sell_all_closes_trade(swaps, identity, trades, jupiter, prices):
    t = trades.create_trade(identity.user_id, TOKEN_A, 1.0, 0.5, 1_000_000)
    prices.prices[TOKEN_A] = 1.5
    jupiter.out_amount = 750_000_000

    res = swaps.execute_sell(identity, TOKEN_A, 100)

    assert res.success and res.closed
    assert res.sol_received == pytest.approx(0.75)
    assert res.pnl == pytest.approx(0.25)
    assert res.pnl_percent == pytest.approx(50.0)
    closed = trades.get_trade_by_id(t.id)
    assert closed.status == TradeStatus.CLOSED
    assert closed.close_reason == "MANUAL"
    assert closed.exit_price == 1.5


def test_partial_sell_reduces_but_keeps_open(swaps, identity, trades, jupiter, solana):
    t = trades.create_trade(identity.user_id, TOKEN_A, 1.0, 0.8, 1_000_000)
    jupiter.out_amount = 500_000_000

    res = swaps.execute_sell(identity, TOKEN_A, 50)

    assert res.success and not res.closed
    assert jupiter.quotes[0][2] == solana.token_balance.raw // 2
    assert res.pnl == pytest.approx(0.1)
    after = trades.get_trade_by_id(t.id)
    assert after.is_open
    assert after.amount_sol == pytest.approx(0.4)


def test_sell_without_close_leaves_ledger_untouched(swaps, identity, trades):
    t = trades.create_trade(identity.user_id, TOKEN_A, 1.0, 0.5, 1)

    res = swaps.execute_sell(identity, TOKEN_A, 100, close_position=False)

    assert res.success and not res.closed
    assert trades.get_trade_by_id(t.id).is_open

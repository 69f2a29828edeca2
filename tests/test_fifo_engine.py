# tests/test_fifo_engine.py
from __future__ import annotations

from datetime import datetime, timedelta
from decimal import Decimal

import pytz

from tradebook.domain.fifo import FifoEngine

T0 = datetime(2025, 1, 2, 14, 30, tzinfo=pytz.UTC)
CALL = "AAPL  240119C00150000"


def at(minutes: int) -> datetime:
    return T0 + timedelta(minutes=minutes)


def test_fifo_matches_oldest_lot_first(make_trade):
    # Buy 100 @ 10, Buy 50 @ 11, Sell 120 @ 15
    # FIFO realized = 100*(15-10) + 20*(15-11) = 500 + 80
    trades = [
        make_trade("BUY", 100, 10.0, ts=at(0)),
        make_trade("BUY", 50, 11.0, ts=at(1)),
        make_trade("SELL", -120, 15.0, ts=at(2)),
    ]

    closed, open_positions = FifoEngine.reduce_stream(trades)

    assert len(closed) == 2
    first, second = closed
    assert (first.quantity, first.entry_price, first.exit_price, first.pnl) == (100, 10, 15, 500)
    assert (second.quantity, second.entry_price, second.exit_price, second.pnl) == (20, 11, 15, 80)
    assert first.opened_at == at(0)
    assert second.opened_at == at(1)
    assert first.closed_at == second.closed_at == at(2)

    assert len(open_positions) == 1
    lot = open_positions[0]
    assert lot.quantity == 30
    assert lot.entry_price == 11
    assert lot.current_value == 330
    assert lot.trade_id == trades[1].id


def test_sell_fee_is_allocated_per_matched_unit(make_trade):
    trades = [
        make_trade("BUY", 100, 10.0, ts=at(0), fees=5.0),
        make_trade("BUY", 50, 11.0, ts=at(1)),
        make_trade("SELL", 120, 15.0, ts=at(2), fees=-12.0),
    ]

    closed, _ = FifoEngine.reduce_stream(trades)

    # 12 / 120 = 0.10 per unit; opening fees are not charged to the match
    assert closed[0].pnl == Decimal("490")
    assert closed[1].pnl == Decimal("78")


def test_buy_covers_short_lots(make_trade):
    trades = [
        make_trade("BUY", 10, 50.0, ts=at(0)),
        make_trade("SELL", 15, 55.0, ts=at(1)),
        make_trade("BUY", 5, 52.0, ts=at(2)),
    ]

    closed, open_positions = FifoEngine.reduce_stream(trades)

    assert [c.pnl for c in closed] == [Decimal("50"), Decimal("15")]
    assert closed[1].entry_price == 55
    assert closed[1].exit_price == 52
    assert open_positions == []


def test_flip_to_short_is_reported_with_negative_quantity(make_trade):
    trades = [
        make_trade("BUY", 5, 20.0, ts=at(0)),
        make_trade("SELL", 10, 21.0, ts=at(1)),
    ]

    closed, open_positions = FifoEngine.reduce_stream(trades)

    assert closed[0].quantity == 5
    assert len(open_positions) == 1
    assert open_positions[0].quantity == -5
    assert open_positions[0].current_value == Decimal("-105")


def test_quantity_is_conserved_across_matching(make_trade):
    trades = [
        make_trade("BUY", 10, 10.0, ts=at(0)),
        make_trade("SELL", 4, 11.0, ts=at(1)),
        make_trade("SELL", 10, 12.0, ts=at(2)),
        make_trade("BUY", 2, 9.0, ts=at(3)),
        make_trade("BUY", 7, 9.5, ts=at(4)),
    ]

    closed, open_positions = FifoEngine.reduce_stream(trades)

    total = sum(abs(Decimal(str(t.quantity))) for t in trades)
    matched = sum(c.quantity for c in closed)
    remaining = sum(abs(p.quantity) for p in open_positions)
    # Every matched unit consumes one opening and one closing unit
    assert 2 * matched + remaining == total
    # Net signed inventory equals the open lots
    assert sum(p.quantity for p in open_positions) == 10 - 4 - 10 + 2 + 7


def test_at_most_one_side_has_open_lots(make_trade):
    trades = [
        make_trade("BUY", 3, 1.0, ts=at(0)),
        make_trade("SELL", 8, 1.0, ts=at(1)),
        make_trade("BUY", 10, 1.0, ts=at(2)),
    ]

    _, open_positions = FifoEngine.reduce_stream(trades)

    assert [p.quantity for p in open_positions] == [5]


def test_forward_split_preserves_notional(make_trade):
    trades = [
        make_trade("BUY", 100, 20.0, ts=at(0)),
        make_trade("SPLIT", 100, 0.0, ts=at(1)),
    ]

    closed, open_positions = FifoEngine.reduce_stream(trades)

    assert closed == []
    lot = open_positions[0]
    assert lot.quantity == 200
    assert lot.entry_price == 10
    assert lot.current_value == 2000


def test_reverse_split_then_sell(make_trade):
    trades = [
        make_trade("BUY", 100, 2.0, ts=at(0)),
        make_trade("SPLIT", -90, 0.0, ts=at(1)),
        make_trade("SELL", 10, 25.0, ts=at(2)),
    ]

    closed, open_positions = FifoEngine.reduce_stream(trades)

    assert closed[0].quantity == 10
    assert closed[0].entry_price == 20
    assert closed[0].pnl == 50
    assert open_positions == []


def test_split_rescales_short_side(make_trade):
    trades = [
        make_trade("BUY", 1, 1.0, ts=at(0)),
        make_trade("SELL", 51, 30.0, ts=at(1)),
        make_trade("SPLIT", 50, 0.0, ts=at(2)),
    ]

    _, open_positions = FifoEngine.reduce_stream(trades)

    assert open_positions[0].quantity == -100
    assert open_positions[0].entry_price == 15


def test_expired_long_option_closes_at_zero(make_trade):
    trades = [
        make_trade("BUY_TO_OPEN", 2, 3.0, ts=datetime(2024, 1, 10, 15, 0, tzinfo=pytz.UTC),
                   symbol=CALL, asset_type="OPTION", contract_multiplier=100),
    ]

    closed, open_positions = FifoEngine.reduce_stream(
        trades, as_of=datetime(2024, 2, 1, tzinfo=pytz.UTC)
    )

    assert open_positions == []
    assert len(closed) == 1
    expired = closed[0]
    assert expired.entry_price == 3
    assert expired.exit_price == 0
    assert expired.quantity == 2
    assert expired.pnl == -600
    # End of expiration day, US/Eastern
    assert expired.closed_at == datetime(2024, 1, 20, 4, 59, 59, tzinfo=pytz.UTC)


def test_expired_short_option_keeps_full_premium(make_trade):
    trades = [
        make_trade("BUY_TO_OPEN", 1, 1.0, ts=datetime(2024, 1, 2, tzinfo=pytz.UTC),
                   symbol=CALL, asset_type="OPTION", contract_multiplier=100),
        make_trade("SELL_TO_OPEN", 3, 2.5, ts=datetime(2024, 1, 3, tzinfo=pytz.UTC),
                   symbol=CALL, asset_type="OPTION", contract_multiplier=100),
    ]

    closed, open_positions = FifoEngine.reduce_stream(
        trades, as_of=datetime(2024, 3, 1, tzinfo=pytz.UTC)
    )

    assert open_positions == []
    assert closed[-1].quantity == 2
    assert closed[-1].pnl == 500


def test_unexpired_option_stays_open(make_trade):
    trades = [
        make_trade("BUY_TO_OPEN", 2, 3.0, ts=datetime(2024, 1, 10, tzinfo=pytz.UTC),
                   symbol=CALL, asset_type="OPTION", contract_multiplier=100),
    ]

    closed, open_positions = FifoEngine.reduce_stream(
        trades, as_of=datetime(2024, 1, 19, 12, 0, tzinfo=pytz.UTC)
    )

    assert closed == []
    assert open_positions[0].current_value == 600


def test_expiry_never_applies_to_stock(make_trade):
    # A stock symbol that happens to contain a date-like code
    trades = [make_trade("BUY", 10, 5.0, symbol="XYZ240119C", asset_type="STOCK")]

    closed, open_positions = FifoEngine.reduce_stream(
        trades, as_of=datetime(2030, 1, 1, tzinfo=pytz.UTC)
    )

    assert closed == []
    assert open_positions[0].quantity == 10


def test_option_expiration_action_follows_quantity_sign(make_trade):
    trades = [
        make_trade("BUY_TO_OPEN", 2, 3.0, ts=at(0), symbol=CALL,
                   asset_type="OPTION", contract_multiplier=100),
        make_trade("OPTIONEXPIRATION", -2, 0.0, ts=at(1), symbol=CALL,
                   asset_type="OPTION", contract_multiplier=100),
    ]

    closed, open_positions = FifoEngine.reduce_stream(trades, as_of=at(2))

    assert open_positions == []
    assert closed[0].pnl == -600
    assert closed[0].closed_at == at(1)


def test_phantom_short_is_not_reported(make_trade):
    trades = [make_trade("SELL_TO_OPEN", 1, 2.0, symbol="MSFT")]

    closed, open_positions = FifoEngine.reduce_stream(trades)

    assert closed == []
    assert open_positions == []


def test_short_after_a_buy_is_reported(make_trade):
    trades = [
        make_trade("ASSIGNMENT", 1, 2.0, ts=at(0), symbol="MSFT"),
        make_trade("SELL", 3, 2.0, ts=at(1), symbol="MSFT"),
    ]

    _, open_positions = FifoEngine.reduce_stream(trades)

    assert [p.quantity for p in open_positions] == [-2]


def test_malformed_rows_are_skipped(make_trade):
    trades = [
        make_trade("BUY", 10, 10.0, ts=at(0)),
        make_trade("DIVIDEND", 10, 0.5, ts=at(1)),
        make_trade("BUY", 0, 10.0, ts=at(2)),
        make_trade(None, 5, 10.0, ts=at(3)),
        make_trade("SELL", "not-a-number", 10.0, ts=at(4)),
        make_trade("SELL", 5, None, ts=at(5)),
        make_trade("SELL", 4, 12.0, ts=at(6)),
    ]

    closed, open_positions = FifoEngine.reduce_stream(trades)

    assert [c.quantity for c in closed] == [4]
    assert open_positions[0].quantity == 6


def test_calculate_skips_rows_with_unusable_timestamp(make_trade):
    trades = [
        make_trade("BUY", 1, 1.0, ts=at(0)),
        make_trade("BUY", 1, 1.0, ts="not-a-date"),
    ]

    result = FifoEngine.calculate(trades, as_of=at(1))

    assert result.closed_trades == []
    assert [p.quantity for p in result.open_positions] == [1]


def test_option_multiplier_inferred_from_symbol(make_trade):
    trades = [
        make_trade("BUY_TO_OPEN", 1, 1.5, ts=at(0), symbol="SPY   250321P00500000"),
        make_trade("SELL_TO_CLOSE", 1, 2.0, ts=at(1), symbol="SPY   250321P00500000"),
    ]

    closed, _ = FifoEngine.reduce_stream(trades, as_of=at(2))

    assert closed[0].multiplier == 100
    assert closed[0].asset_type == "OPTION"
    assert closed[0].pnl == 50


def test_broker_defaults_to_unknown(make_trade):
    closed, open_positions = FifoEngine.reduce_stream([make_trade("BUY", 1, 1.0)])
    assert open_positions[0].broker == "Unknown"


def test_calculate_groups_by_account_and_instrument(make_trade):
    trades = [
        make_trade("BUY", 10, 10.0, ts=at(0), account_id="a"),
        make_trade("SELL", 10, 11.0, ts=at(1), account_id="b"),
        make_trade("BUY", 10, 10.0, ts=at(2), account_id="a", symbol="AAPL.OLD",
                   universal_symbol_id="uid-aapl"),
        make_trade("SELL", 5, 12.0, ts=at(3), account_id="a", symbol="AAPL",
                   universal_symbol_id="uid-aapl"),
    ]

    result = FifoEngine.calculate(trades)

    # Account b's sell never meets account a's buy; the universal id joins both tickers
    assert len(result.closed_trades) == 1
    assert result.closed_trades[0].pnl == 10
    assert result.closed_trades[0].symbol == "AAPL.OLD"
    quantities = sorted(p.quantity for p in result.open_positions)
    assert quantities == [5, 10]
    assert result.unrealized_cost == 150


def test_calculate_sorts_each_stream_by_time(make_trade):
    trades = [
        make_trade("SELL", 10, 15.0, ts=at(5)),
        make_trade("BUY", 10, 10.0, ts=at(0)),
    ]

    result = FifoEngine.calculate(trades)

    assert result.closed_trades[0].pnl == 50
    assert result.open_positions == []

from decimal import Decimal

import pytest

from vapor_gateway.billing import (
    calculate_cost,
    check_admission,
    drain_settlements,
    schedule_settlement,
    settle,
)
from vapor_gateway.errors import InsufficientBalanceError
from vapor_gateway.schemas import ModelConfig, TokenUsage, UserRecord


def _model(input_price="5", output_price="15"):
    return ModelConfig(model_id="gpt-4o", channel_id="c", input_price=input_price, output_price=output_price)


def test_cost_of_nothing_is_zero():
    assert calculate_cost(_model(), 0, 0) == Decimal("0")


def test_cost_matches_reference_debit():
    assert calculate_cost(_model(), 5, 3) == Decimal("0.07")


def test_cost_is_linear_in_tokens():
    model = _model("0.5", "1.5")
    assert calculate_cost(model, 2000, 0) == 2 * calculate_cost(model, 1000, 0)
    assert calculate_cost(model, 0, 4000) == 4 * calculate_cost(model, 0, 1000)
    assert calculate_cost(model, 1000, 1000) == calculate_cost(model, 1000, 0) + calculate_cost(model, 0, 1000)


def test_cost_is_rounded_to_price_precision():
    # 1/1000 * 0.0015 = 0.0000015 -> 0.000002
    assert calculate_cost(_model("0.0015", "0"), 1, 0) == Decimal("0.000002")


def test_cost_never_negative():
    assert calculate_cost(_model(), -10, -10) == Decimal("0")


def test_admission_allows_exact_balance():
    # cost(0, 100) at output price 10 = 1.0
    model = _model("0", "10")
    user = UserRecord(uid="u", balance=Decimal("1.0"))
    assert check_admission(user, model, 0) == Decimal("1.0")


def test_admission_rejects_below_estimate():
    model = _model("0", "10")
    user = UserRecord(uid="u", balance=Decimal("0.999999"))
    with pytest.raises(InsufficientBalanceError) as excinfo:
        check_admission(user, model, 0)
    assert excinfo.value.status_code == 402
    assert excinfo.value.code == "insufficient_balance"


@pytest.mark.asyncio
async def test_settle_debits_and_appends_one_record(store):
    await settle(store, "u_rich", "gpt-4o", _model(), TokenUsage(5, 3))

    user = await store.get_user("u_rich")
    assert user.balance == Decimal("9.93")
    assert user.total_consumed == Decimal("0.07")
    records = store.list_usage("u_rich")
    assert len(records) == 1
    assert (records[0].input_tokens, records[0].output_tokens, records[0].cost) == (5, 3, Decimal("0.07"))


@pytest.mark.asyncio
async def test_settle_records_usage_even_when_funds_run_out(store):
    await settle(store, "u_poor", "gpt-4o", _model(), TokenUsage(5, 3))

    user = await store.get_user("u_poor")
    assert user.balance == Decimal("0.001")
    assert len(store.list_usage("u_poor")) == 1


@pytest.mark.asyncio
async def test_settle_swallows_ledger_failures(store):
    # 用户不存在：只记录日志
    await settle(store, "ghost", "gpt-4o", _model(), TokenUsage(5, 3))
    assert store.list_usage("ghost") == []


@pytest.mark.asyncio
async def test_scheduled_settlement_completes_on_drain(store):
    schedule_settlement(store, "u_rich", "gpt-4o", _model(), TokenUsage(5, 3))
    await drain_settlements()
    assert len(store.list_usage("u_rich")) == 1

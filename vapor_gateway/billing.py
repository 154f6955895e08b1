#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
计费模块 - 费用计算、余额准入检查、用量结算

价格单位为每 1000 tokens，金额统一使用 Decimal 并按 PRICE_PRECISION 位四舍五入。
流式请求的结算在后台任务中完成，失败只记录日志，不重试也不影响客户端。
"""

import asyncio
from decimal import ROUND_HALF_UP, Decimal
from typing import Set

from .config import settings
from .errors import InsufficientBalanceError
from .helpers import error_log, info_log, warning_log
from .kv_store import InsufficientFunds, Ledger
from .schemas import ModelConfig, TokenUsage, UsageRecord, UserRecord

_THOUSAND = Decimal(1000)

# 未完成的后台结算任务（保持强引用，关闭时等待）
_pending_settlements: Set[asyncio.Task] = set()


def quantize_amount(amount: Decimal) -> Decimal:
    return amount.quantize(Decimal(1).scaleb(-settings.PRICE_PRECISION), rounding=ROUND_HALF_UP)


def calculate_cost(model: ModelConfig, input_tokens: int, output_tokens: int) -> Decimal:
    """cost = input/1000 * input_price + output/1000 * output_price"""
    input_tokens = max(int(input_tokens or 0), 0)
    output_tokens = max(int(output_tokens or 0), 0)
    cost = (
        Decimal(input_tokens) / _THOUSAND * model.input_price
        + Decimal(output_tokens) / _THOUSAND * model.output_price
    )
    return quantize_amount(max(cost, Decimal(0)))


def check_admission(user: UserRecord, model: ModelConfig, estimated_input_tokens: int) -> Decimal:
    """
    余额准入检查：余额低于 (预估输入, 固定 100 输出) 的费用时拒绝

    Returns:
        预估费用
    """
    estimated_cost = calculate_cost(model, estimated_input_tokens, settings.ADMISSION_OUTPUT_TOKENS)
    if user.balance < estimated_cost:
        info_log(
            "[BILLING] 余额不足，拒绝请求",
            user=user.uid,
            balance=str(user.balance),
            estimated_cost=str(estimated_cost),
        )
        raise InsufficientBalanceError("余额不足，请先充值")
    return estimated_cost


async def settle(
    ledger: Ledger,
    user_id: str,
    model_id: str,
    model: ModelConfig,
    usage: TokenUsage,
) -> None:
    """扣费并追加一条用量账目；任何失败只记录日志"""
    cost = calculate_cost(model, usage.input_tokens, usage.output_tokens)
    record = UsageRecord(
        user_id=user_id,
        model_id=model_id,
        input_tokens=usage.input_tokens,
        output_tokens=usage.output_tokens,
        cost=cost,
    )

    try:
        try:
            balance = await ledger.debit_balance(user_id, cost)
        except InsufficientFunds as e:
            # 请求已经完成，账目照记
            warning_log("[BILLING] 结算时余额不足，仅记录用量", user=user_id, error=str(e))
        else:
            info_log(
                "[BILLING] 扣费完成",
                user=user_id,
                model=model_id,
                input_tokens=usage.input_tokens,
                output_tokens=usage.output_tokens,
                cost=str(cost),
                balance=str(balance),
            )
        await ledger.append_usage(record)
    except Exception as e:
        error_log(f"[BILLING] 记录用量失败: {e}", user=user_id, model=model_id, cost=str(cost))


def schedule_settlement(
    ledger: Ledger,
    user_id: str,
    model_id: str,
    model: ModelConfig,
    usage: TokenUsage,
) -> asyncio.Task:
    """在后台任务中结算（流式响应结束后调用）"""
    task = asyncio.create_task(settle(ledger, user_id, model_id, model, usage))
    _pending_settlements.add(task)
    task.add_done_callback(_pending_settlements.discard)
    return task


async def drain_settlements() -> None:
    """等待所有未完成的后台结算"""
    while _pending_settlements:
        await asyncio.gather(*list(_pending_settlements), return_exceptions=True)

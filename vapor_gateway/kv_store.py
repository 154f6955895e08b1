#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
KV 存储模块 - 凭证 / 配置 / 账本 三个协作接口的内存实现

网关核心只依赖下面三个 Protocol；MemoryKVStore 从 JSON 数据文件加载初始数据，
方便独立运行与测试。余额扣减在 asyncio.Lock 下完成（原子的条件扣减）。
"""

import asyncio
import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Tuple

from .config import settings
from .helpers import debug_log, error_log, info_log, json_lib
from .schemas import ApiKeyRecord, ChannelConfig, ModelConfig, UsageRecord, UserRecord


class StoreError(Exception):
    """存储层错误基类"""


class UserNotFound(StoreError):
    def __init__(self, uid: str):
        super().__init__(f"用户不存在: {uid}")
        self.uid = uid


class InsufficientFunds(StoreError):
    def __init__(self, uid: str, balance: Decimal, amount: Decimal):
        super().__init__(f"余额不足: uid={uid} balance={balance} amount={amount}")
        self.uid = uid
        self.balance = balance
        self.amount = amount


class CredentialStore(Protocol):
    async def validate_api_key(self, key: str) -> Optional[UserRecord]:
        ...


class ConfigStore(Protocol):
    async def get_model(self, model_id: str) -> Optional[ModelConfig]:
        ...

    async def get_channel(self, channel_id: str) -> Optional[ChannelConfig]:
        ...

    async def list_models(self) -> List[ModelConfig]:
        ...


class Ledger(Protocol):
    async def debit_balance(self, uid: str, amount: Decimal) -> Decimal:
        ...

    async def append_usage(self, record: UsageRecord) -> None:
        ...


def _day_key(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).strftime("%Y%m%d")


def _empty_bucket() -> Dict[str, Any]:
    return {"requests": 0, "input_tokens": 0, "output_tokens": 0, "cost": Decimal("0")}


def _add_to_bucket(bucket: Dict[str, Any], record: UsageRecord) -> None:
    bucket["requests"] += 1
    bucket["input_tokens"] += record.input_tokens
    bucket["output_tokens"] += record.output_tokens
    bucket["cost"] += record.cost


class MemoryKVStore:
    """内存 KV 存储，实现 CredentialStore / ConfigStore / Ledger"""

    # 类级别单例状态
    _instance: Optional["MemoryKVStore"] = None

    @classmethod
    def get_instance(cls) -> "MemoryKVStore":
        if cls._instance is None:
            store = cls()
            store.load_from_file(settings.GATEWAY_DATA_FILE)
            cls._instance = store
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """重置单例实例（用于测试）"""
        cls._instance = None

    def __init__(self):
        self._users: Dict[str, UserRecord] = {}
        self._api_keys: Dict[str, ApiKeyRecord] = {}
        self._models: Dict[str, ModelConfig] = {}
        self._channels: Dict[str, ChannelConfig] = {}
        self._usage_records: List[UsageRecord] = []
        # (uid, YYYYMMDD) -> 日汇总
        self._daily_usage: Dict[Tuple[str, str], Dict[str, Any]] = {}

        # 余额变更锁 - 读取、比较、扣减必须在同一临界区内
        self._balance_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # 数据加载 / 写入
    # ------------------------------------------------------------------

    def load_from_file(self, path: str) -> None:
        """从 JSON 数据文件加载 users / api_keys / channels / models"""
        data_file = Path(path)
        if not data_file.exists():
            info_log("[STORE] 数据文件不存在，使用空存储", path=str(data_file))
            return

        try:
            data = json_lib.loads(data_file.read_bytes())
        except ValueError as e:
            error_log(f"[STORE] 数据文件解析失败: {e}", path=str(data_file))
            raise

        self.load_data(data)
        info_log(
            "[STORE] 数据文件加载完成",
            path=str(data_file),
            users=len(self._users),
            api_keys=len(self._api_keys),
            channels=len(self._channels),
            models=len(self._models),
        )

    def load_data(self, data: Dict[str, Any]) -> None:
        for item in data.get("users") or []:
            self.put_user(UserRecord.model_validate(item))
        for item in data.get("api_keys") or []:
            self.put_api_key(ApiKeyRecord.model_validate(item))
        for item in data.get("channels") or []:
            self.put_channel(ChannelConfig.model_validate(item))
        for item in data.get("models") or []:
            self.put_model(ModelConfig.model_validate(item))

    def put_user(self, user: UserRecord) -> None:
        self._users[user.uid] = user

    def put_api_key(self, api_key: ApiKeyRecord) -> None:
        self._api_keys[api_key.key] = api_key

    def put_model(self, model: ModelConfig) -> None:
        self._models[model.model_id] = model

    def put_channel(self, channel: ChannelConfig) -> None:
        self._channels[channel.channel_id] = channel

    # ------------------------------------------------------------------
    # 凭证
    # ------------------------------------------------------------------

    async def validate_api_key(self, key: str) -> Optional[UserRecord]:
        """校验 API Key 并返回所属用户；被封禁的用户照常返回，由调用方判断"""
        api_key = self._api_keys.get(key)
        if api_key is None or not api_key.enabled:
            return None

        api_key.last_used = int(time.time() * 1000)
        user = self._users.get(api_key.uid)
        if user is None:
            debug_log("[STORE] API Key 对应的用户不存在", uid=api_key.uid)
            return None
        return user.model_copy()

    async def get_user(self, uid: str) -> Optional[UserRecord]:
        user = self._users.get(uid)
        return user.model_copy() if user else None

    # ------------------------------------------------------------------
    # 配置（只读）
    # ------------------------------------------------------------------

    async def get_model(self, model_id: str) -> Optional[ModelConfig]:
        model = self._models.get(model_id)
        return model.model_copy() if model else None

    async def get_channel(self, channel_id: str) -> Optional[ChannelConfig]:
        channel = self._channels.get(channel_id)
        return channel.model_copy() if channel else None

    async def list_models(self) -> List[ModelConfig]:
        return [model.model_copy() for model in self._models.values()]

    # ------------------------------------------------------------------
    # 账本
    # ------------------------------------------------------------------

    async def debit_balance(self, uid: str, amount: Decimal) -> Decimal:
        """原子条件扣减：余额不足时抛出 InsufficientFunds，余额不变"""
        async with self._balance_lock:
            user = self._users.get(uid)
            if user is None:
                raise UserNotFound(uid)
            if user.balance < amount:
                raise InsufficientFunds(uid, user.balance, amount)

            user.balance -= amount
            user.total_consumed += amount
            return user.balance

    async def append_usage(self, record: UsageRecord) -> None:
        """追加用量账目并更新按日汇总"""
        self._usage_records.append(record)

        day_key = (record.user_id, _day_key(record.created_at))
        daily = self._daily_usage.get(day_key)
        if daily is None:
            daily = {"uid": record.user_id, "date": day_key[1], **_empty_bucket(), "models": {}}
            self._daily_usage[day_key] = daily

        _add_to_bucket(daily, record)
        _add_to_bucket(daily["models"].setdefault(record.model_id, _empty_bucket()), record)

    async def get_user_usage(self, uid: str, days: int = 30) -> List[Dict[str, Any]]:
        """最近 days 天的日汇总，按日期倒序，缺失的日期跳过"""
        today = datetime.now(timezone.utc)
        usage = []
        for offset in range(days):
            daily = self._daily_usage.get((uid, _day_key(today - timedelta(days=offset))))
            if daily:
                usage.append(daily)
        return usage

    def list_usage(self, uid: Optional[str] = None) -> List[UsageRecord]:
        if uid is None:
            return list(self._usage_records)
        return [record for record in self._usage_records if record.user_id == uid]


def get_kv_store() -> MemoryKVStore:
    """FastAPI dependency returning the process-wide store."""
    return MemoryKVStore.get_instance()

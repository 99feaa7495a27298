"""
AI 用量監控
成本估算、用量記錄與後台彙總
"""
from collections import defaultdict
from datetime import datetime, timedelta, timezone
import logging
from typing import Any, Dict, List, Optional
from sqlalchemy import func, select
from sqlalchemy.orm import Session
from clerva.models import AIUsageLog, User
from clerva.utils.errors import APIError

logger = logging.getLogger(__name__)

# 每 1K tokens 的美元價格 (input, output)
TOKEN_COSTS: Dict[str, tuple] = {
    "gpt-4o": (0.0025, 0.01),
    "gpt-4o-mini": (0.00015, 0.0006),
    "gpt-4-turbo": (0.01, 0.03),
    "gpt-4": (0.03, 0.06),
    "gpt-3.5-turbo": (0.0005, 0.0015),
    "o1": (0.015, 0.06),
    "o1-mini": (0.003, 0.012),
    "default": (0.0005, 0.0015),
}
PERIODS = ("day", "week", "month")


def calculate_cost(model: str, prompt_tokens: int, completion_tokens: int) -> float:
    """依模型價目估算成本，未知模型用 default。"""
    input_price, output_price = TOKEN_COSTS.get(model, TOKEN_COSTS["default"])
    cost = (prompt_tokens / 1000) * input_price + (completion_tokens / 1000) * output_price
    return round(cost, 6)


def period_start(period: str, now: Optional[datetime] = None) -> datetime:
    """day=今日 00:00，week=往前 7 天，month=本月 1 日（UTC）"""
    now = now or datetime.now(timezone.utc)
    if period == "day":
        return now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "week":
        return now - timedelta(days=7)
    if period == "month":
        return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    raise APIError("Invalid period. Allowed values: day, week, month")


class AIMonitoringService:

    @classmethod
    def track_usage(cls, session: Session, **metric: Any) -> AIUsageLog:
        """
        寫入一筆 AIUsageLog；缺 total_tokens / estimated_cost 時自動計算

        Args:
            session: 資料庫會話
            **metric: user_id, session_id, model, operation, prompt_tokens,
                completion_tokens, total_tokens, estimated_cost, latency_ms,
                cached, success, error_type, error_message
        """
        model = metric.get("model") or "default"
        prompt = int(metric.get("prompt_tokens") or 0)
        completion = int(metric.get("completion_tokens") or 0)
        total = metric.get("total_tokens")
        cost = metric.get("estimated_cost")
        error_message = metric.get("error_message")
        log = AIUsageLog(
            user_id=metric.get("user_id"),
            session_id=metric.get("session_id"),
            model=model,
            operation=metric.get("operation") or "chat",
            prompt_tokens=prompt,
            completion_tokens=completion,
            total_tokens=int(total) if total is not None else prompt + completion,
            estimated_cost=float(cost) if cost is not None else calculate_cost(model, prompt, completion),
            latency_ms=metric.get("latency_ms"),
            cached=bool(metric.get("cached", False)),
            success=bool(metric.get("success", True)),
            error_type=metric.get("error_type"),
            error_message=error_message[:500] if isinstance(error_message, str) else None,
        )
        session.add(log)
        if not log.success:
            logger.warning("AI error %s on %s/%s user=%s", log.error_type, log.operation, log.model, log.user_id)
        return log

    @classmethod
    def check_usage_limits(
        cls, session: Session, user_id: str,
        daily_token_limit: Optional[int] = None, daily_cost_limit: Optional[float] = None,
    ) -> Dict[str, Any]:
        """今日用量是否仍在上限內"""
        since = period_start("day")
        tokens, cost = session.execute(
            select(func.coalesce(func.sum(AIUsageLog.total_tokens), 0),
                   func.coalesce(func.sum(AIUsageLog.estimated_cost), 0.0))
            .where(AIUsageLog.user_id == user_id, AIUsageLog.created_at >= since)
        ).one()
        within_tokens = not daily_token_limit or tokens < daily_token_limit
        within_cost = not daily_cost_limit or cost < daily_cost_limit
        return {
            "withinLimits": bool(within_tokens and within_cost),
            "currentTokens": int(tokens),
            "currentCost": round(float(cost), 4),
            "tokenLimit": daily_token_limit,
            "costLimit": daily_cost_limit,
        }

    @staticmethod
    def _group_stats(logs: List[AIUsageLog], attr: str) -> List[Dict[str, Any]]:
        groups: Dict[str, Dict[str, Any]] = {}
        for log in logs:
            key = getattr(log, attr)
            g = groups.setdefault(key, {attr: key, "requests": 0, "tokens": 0, "cost": 0.0, "errors": 0})
            g["requests"] += 1
            g["tokens"] += log.total_tokens
            g["cost"] += log.estimated_cost
            if not log.success:
                g["errors"] += 1
        for g in groups.values():
            g["cost"] = round(g["cost"], 6)
        return sorted(groups.values(), key=lambda g: g["cost"], reverse=True)

    @classmethod
    def summary(cls, session: Session, period: str) -> Dict[str, Any]:
        since = period_start(period)
        logs = session.scalars(select(AIUsageLog).where(AIUsageLog.created_at >= since)).all()

        n = len(logs)
        errors = sum(1 for log in logs if not log.success)
        cache_hits = sum(1 for log in logs if log.cached)
        latencies = [log.latency_ms for log in logs if log.latency_ms is not None]
        stats = {
            "totalRequests": n,
            "totalTokens": sum(log.total_tokens for log in logs),
            "totalCost": round(sum(log.estimated_cost for log in logs), 6),
            "avgLatencyMs": round(sum(latencies) / len(latencies)) if latencies else 0,
            "errorCount": errors,
            "errorRate": round(errors / n * 100, 2) if n else 0,
            "cacheHits": cache_hits,
            "cacheHitRate": round(cache_hits / n * 100, 2) if n else 0,
        }

        daily: Dict[str, Dict[str, Any]] = defaultdict(lambda: {"requests": 0, "tokens": 0, "cost": 0.0, "errors": 0})
        per_user: Dict[str, Dict[str, Any]] = defaultdict(lambda: {"requests": 0, "tokens": 0, "cost": 0.0})
        for log in logs:
            created = log.created_at if log.created_at.tzinfo else log.created_at.replace(tzinfo=timezone.utc)
            d = daily[created.date().isoformat()]
            d["requests"] += 1
            d["tokens"] += log.total_tokens
            d["cost"] += log.estimated_cost
            d["errors"] += 0 if log.success else 1
            if log.user_id:
                u = per_user[log.user_id]
                u["requests"] += 1
                u["tokens"] += log.total_tokens
                u["cost"] += log.estimated_cost

        daily_summaries = [
            {"date": day, **{**v, "cost": round(v["cost"], 6)}} for day, v in sorted(daily.items())
        ]

        top = sorted(per_user.items(), key=lambda kv: kv[1]["cost"], reverse=True)[:10]
        users = {u.id: u for u in session.scalars(select(User).where(User.id.in_([uid for uid, _ in top])))} if top else {}
        top_users = [{
            "userId": uid,
            "requests": v["requests"],
            "tokens": v["tokens"],
            "cost": round(v["cost"], 6),
            "user": users[uid].summary() if uid in users else None,
        } for uid, v in top]

        return {
            "period": period,
            "stats": stats,
            "operationStats": cls._group_stats(logs, "operation"),
            "modelStats": cls._group_stats(logs, "model"),
            "dailySummaries": daily_summaries,
            "topUsers": top_users,
        }

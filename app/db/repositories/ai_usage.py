from datetime import datetime
from typing import Any, Dict, List

from motor.motor_asyncio import AsyncIOMotorDatabase

from app.models.ai_usage import AIUsage


class AIUsageRepository:
    """Access to the ai_usage collection"""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self.collection = db.ai_usage

    async def insert(self, usage: AIUsage) -> str:
        result = await self.collection.insert_one(usage.model_dump(exclude={"id"}))
        return str(result.inserted_id)

    async def total_cost_since(self, since: datetime) -> float:
        pipeline = [
            {"$match": {"created_at": {"$gte": since}}},
            {"$group": {"_id": None, "total_cost": {"$sum": "$cost_usd"}}},
        ]
        result = await self.collection.aggregate(pipeline).to_list(length=1)
        return float(result[0]["total_cost"]) if result else 0.0

    async def summary_since(self, since: datetime) -> List[Dict[str, Any]]:
        """Cost and token totals per provider/model"""
        pipeline = [
            {"$match": {"created_at": {"$gte": since}}},
            {
                "$group": {
                    "_id": {"provider": "$provider", "model": "$model"},
                    "requests": {"$sum": 1},
                    "total_tokens": {"$sum": "$total_tokens"},
                    "cost_usd": {"$sum": "$cost_usd"},
                }
            },
            {"$sort": {"cost_usd": -1}},
        ]
        rows = await self.collection.aggregate(pipeline).to_list(length=None)
        return [
            {
                "provider": row["_id"]["provider"],
                "model": row["_id"]["model"],
                "requests": row["requests"],
                "total_tokens": row["total_tokens"],
                "cost_usd": round(row["cost_usd"], 6),
            }
            for row in rows
        ]

"""
GET /audit/logs
GET /audit/users/{user_id}/transactions
"""
from __future__ import annotations
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from giggle.db import repo
from giggle.db.models import AuditLog, Transaction

router = APIRouter()


def _serialize_log(entry: AuditLog) -> dict:
    return {
        "id": entry.id,
        "user_id": entry.user_id,
        "action": entry.action,
        "details": entry.details,
        "channel_message_id": entry.channel_message_id,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }


def _serialize_tx(tx: Transaction) -> dict:
    return {
        "id": tx.id,
        "type": tx.type,
        "token": tx.token,
        "amount": tx.amount,
        "sender": tx.sender,
        "recipient": tx.recipient,
        "tx_hash": tx.tx_hash,
        "status": tx.status,
        "block_number": tx.block_number,
        "created_at": tx.created_at.isoformat() if tx.created_at else None,
    }


@router.get("/audit/logs")
async def list_logs(
    user_id: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    session: AsyncSession = Depends(repo.get_session),
):
    logs = await repo.list_audit_logs(session, user_id=user_id, limit=limit)
    return {"logs": [_serialize_log(entry) for entry in logs]}


@router.get("/audit/users/{user_id}/transactions")
async def list_transactions(
    user_id: str,
    limit: int = Query(10, ge=1, le=100),
    session: AsyncSession = Depends(repo.get_session),
):
    if await repo.get_user(session, user_id) is None:
        raise HTTPException(status_code=404, detail="User not found")
    transactions = await repo.list_user_transactions(session, user_id, limit)
    return {"transactions": [_serialize_tx(tx) for tx in transactions]}

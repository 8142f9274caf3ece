# account_routes.py - balance, account summary, billing entry points, debug logs
import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from auth import Caller, admin_required, login_required, system_only
from config.limits import DEBUG_LOG
from credit_ledger import CreditLedger
from database import get_db
from debug_log import DebugLogBuffer
from dependencies import get_debug_buffer, get_job_service
from errors import NotFound
from job_service import JobService
from models import User
from schemas import BillingCancelRequest, BillingConfirmRequest

logger = logging.getLogger(__name__)

account_router = APIRouter(tags=["account"])


#=============================================
# ACCOUNT
#=============================================

@account_router.get("/account/credits")
async def get_credits(user: User = Depends(login_required), db: Session = Depends(get_db)):
    return {
        "credits": await CreditLedger.balance(db, user.id),
        "isAdmin": bool(user.is_admin),
    }


@account_router.get("/account/summary")
async def get_summary(
    user: User = Depends(login_required),
    db: Session = Depends(get_db),
    jobs: JobService = Depends(get_job_service),
):
    return {
        "email": user.email,
        "credits": await CreditLedger.balance(db, user.id),
        "isAdmin": bool(user.is_admin),
        "subscribed": user.has_subscription,
        "jobs": await jobs.counts_by_status(db, user),
    }


#=============================================
# BILLING (external ledger, system secret)
#=============================================

@account_router.post("/billing/confirm")
async def confirm_payment(
    body: BillingConfirmRequest,
    caller: Caller = Depends(system_only),
    db: Session = Depends(get_db),
):
    result = await CreditLedger.apply_payment_confirmation(
        db,
        body.user_id,
        plan=body.plan,
        credits=body.credits,
        customer_ref=body.customer_ref,
        subscription_ref=body.subscription_ref,
    )
    logger.info(f"Payment confirmed for user {body.user_id}: +{result['added']} credits")
    return {"ok": True, **result}


@account_router.post("/billing/cancel")
async def cancel_subscription(
    body: BillingCancelRequest,
    caller: Caller = Depends(system_only),
    db: Session = Depends(get_db),
):
    if not await CreditLedger.cancel_subscription(db, body.customer_ref):
        raise NotFound("Customer not found")
    return {"ok": True}


#=============================================
# DEBUG
#=============================================

@account_router.get("/debug/logs")
async def debug_logs(
    limit: int = Query(DEBUG_LOG.DEFAULT_LIMIT, ge=1, le=DEBUG_LOG.MAX_ENTRIES),
    admin: User = Depends(admin_required),
    buffer: DebugLogBuffer = Depends(get_debug_buffer),
):
    return {"entries": buffer.recent(limit)}


__all__ = ['account_router']

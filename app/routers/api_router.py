from fastapi import APIRouter
from app.routers import leave, leave_policies, leave_balances, audit_logs

# Centralized API router hub
# Routers are aggregated here, and main.py only imports this single hub.
api_router = APIRouter()

api_router.include_router(leave.router, tags=["Leave Requests"])
api_router.include_router(leave_policies.router, tags=["Leave Policies"])
api_router.include_router(leave_balances.router, tags=["Leave Balances"])
api_router.include_router(audit_logs.router, tags=["Audit Logs"])

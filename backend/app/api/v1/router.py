# backend/app/api/v1/router.py
from fastapi import APIRouter
from backend.app.api.v1.endpoints import auth, sync, vault

api_router = APIRouter()
api_router.include_router(auth.router, prefix="/auth", tags=["auth"])
api_router.include_router(vault.router, prefix="/vault", tags=["vault"])
api_router.include_router(sync.router, prefix="/sync", tags=["sync"])

"""
ai_jury/routes/__init__.py
Route registration
"""
from fastapi import APIRouter
from ai_jury.routes import jury

router = APIRouter()

router.include_router(jury.router)

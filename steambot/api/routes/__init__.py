"""
API Routes
"""
from fastapi import APIRouter

from steambot.api.routes.chat import router as chat_router
from steambot.api.webhooks.sms import router as sms_router

router = APIRouter()

router.include_router(chat_router, prefix="/chat", tags=["Chat"])
router.include_router(sms_router, prefix="/sms", tags=["Webhooks"])

import hmac
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException

from config import config
from services.scheduler_service import scheduler_service

router = APIRouter(prefix="/cron", tags=["cron"])


def verify_cron_secret(authorization: Optional[str] = Header(None)) -> None:
    expected = f"Bearer {config.CRON_SECRET}" if config.CRON_SECRET else None
    if not expected or not authorization or not hmac.compare_digest(authorization, expected):
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.get("/storage-check", dependencies=[Depends(verify_cron_secret)])
def storage_check():
    return scheduler_service.check_storage()


@router.get("/weekly-report", dependencies=[Depends(verify_cron_secret)])
def weekly_report():
    return scheduler_service.send_weekly_report()

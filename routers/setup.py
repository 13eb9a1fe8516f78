"""
First-run wizard: trade an OAuth code for the Drive owner's refresh token
and keep it in KV. Only usable while no Drive credentials exist.
"""

import logging

import httpx
from fastapi import APIRouter, HTTPException, Request, Response

from kv import kv_store, CREDENTIALS_KEY
from schemas.auth import SetupFinishRequest
from services.google_auth import is_drive_configured
from services.rate_limit_service import enforce_rate_limit

router = APIRouter(prefix="/setup", tags=["setup"])

logger = logging.getLogger("zee_index.routers.setup")

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"


@router.get("/status")
def setup_status():
    return {"configured": is_drive_configured()}


@router.post("/finish")
def finish_setup(body: SetupFinishRequest, request: Request, response: Response):
    enforce_rate_limit(request, "auth", response)
    if is_drive_configured():
        raise HTTPException(status_code=403, detail="Setup has already been completed")

    try:
        with httpx.Client(timeout=15.0) as client:
            token_response = client.post(GOOGLE_TOKEN_URL, data={
                "code": body.authCode,
                "client_id": body.clientId,
                "client_secret": body.clientSecret,
                "redirect_uri": body.redirectUri,
                "grant_type": "authorization_code",
            })
    except httpx.HTTPError as e:
        logger.error(f"Token exchange request failed: {e}")
        raise HTTPException(status_code=502, detail="Could not reach Google")

    try:
        token_data = token_response.json()
    except ValueError:
        token_data = {}

    if token_response.status_code >= 400:
        raise HTTPException(status_code=400,
                            detail=token_data.get("error_description") or "Failed to exchange authorization code")
    if not token_data.get("refresh_token"):
        raise HTTPException(status_code=400,
                            detail="No refresh token received, revoke the app's access or use prompt=consent")

    kv_store.set_json(CREDENTIALS_KEY, {
        "clientId": body.clientId,
        "clientSecret": body.clientSecret,
        "refreshToken": token_data["refresh_token"],
        "rootFolderId": body.rootFolderId,
    }, ttl=0)
    logger.info("Drive credentials stored by setup wizard")
    return {"success": True}

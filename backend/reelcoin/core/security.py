"""Authentication dependency and API access logging"""
import json
from datetime import datetime, timezone
from typing import Optional
from fastapi import HTTPException, Request
from reelcoin.db import redis as redis_store
from reelcoin.core.logging import security_logger, api_access_logger


def get_session_id(request: Request) -> Optional[str]:
    """Session id from the session cookie, or a Bearer token for non-browser clients"""
    session_id = request.cookies.get("session_id")
    if session_id:
        return session_id
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[len("Bearer "):].strip() or None
    return None


def require_auth(request: Request) -> str:
    """Dependency: Require authentication, return account_id"""
    session_id = get_session_id(request)

    if not session_id:
        raise HTTPException(401, "Not authenticated. Please log in.")

    account_id = redis_store.get_session(session_id)
    if not account_id:
        security_logger.info(f"Unknown or expired session - Path: {request.url.path}")
        raise HTTPException(401, "Session expired. Please log in again.")

    return account_id


def log_api_access(
    request: Request,
    status_code: int = 200,
    duration_ms: Optional[float] = None,
    error: Optional[str] = None
):
    """Log API access information (never the session id itself)"""
    client_ip = request.headers.get("X-Forwarded-For", "").split(",")[0].strip()
    if not client_ip:
        client_ip = request.client.host if request.client else "unknown"

    log_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "method": request.method,
        "path": request.url.path,
        "query": str(request.url.query) if request.url.query else None,
        "client_ip": client_ip,
        "user_agent": request.headers.get("User-Agent", "unknown"),
        "status_code": status_code,
        "duration_ms": round(duration_ms, 1) if duration_ms is not None else None,
        "error": error
    }

    if error or status_code >= 400:
        api_access_logger.warning(f"API Access: {json.dumps(log_data)}")
    else:
        api_access_logger.info(f"API Access: {json.dumps(log_data)}")

"""Enrollment API routes -- registration status and registration."""
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from facegate.api.dependencies import get_face_api_client, get_tracker
from facegate.application.registration import (
    RegistrationCleanupError,
    is_registered,
    register_user,
)
from facegate.domain.errors import FaceApiError, RecognitionUnavailableError
from facegate.domain.recognition import CaptureErrorCode

router = APIRouter(prefix="/api", tags=["enrollment"])

log = logging.getLogger("facegate.register")


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class UserCheckRequest(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=255)


class RegisterRequest(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=255)
    imageData: str = Field(..., pattern=r"^data:image/[a-zA-Z]+;base64,.+")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _failure(status_code: int, code: CaptureErrorCode, message: str, **extra) -> JSONResponse:
    body = {"success": False, "timestamp": _now_iso(), "error": message, "errorCode": code.value}
    body.update(extra)
    return JSONResponse(status_code=status_code, content=body)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("/user")
def api_user_check(req: UserCheckRequest, client=Depends(get_face_api_client)):
    """Report whether *user_id* is enrolled with the Face API."""
    try:
        registered = is_registered(client, req.user_id)
    except RecognitionUnavailableError as exc:
        log.error("User check failed for %s: %s", req.user_id, exc)
        return _failure(500, CaptureErrorCode.SERVER_ERROR, "Failed to check user registration.", registered=False)
    return {"registered": registered, "timestamp": _now_iso()}


@router.post("/register")
def api_register(req: RegisterRequest, client=Depends(get_face_api_client), tracker=Depends(get_tracker)):
    """Enroll *user_id* with the face in *imageData*.

    A spoofed image answers 200 with LIVENESS_CHECK_ERROR so the frontend can
    show the liveness message instead of a generic failure.
    """
    try:
        outcome = register_user(client, tracker, req.user_id, req.imageData)
    except RegistrationCleanupError:
        return _failure(500, CaptureErrorCode.SERVER_ERROR, "Internal error while cleaning up the registration.")
    except ValueError:
        return _failure(400, CaptureErrorCode.INVALID_REQUEST, "Invalid base64 image data.")
    except (FaceApiError, RecognitionUnavailableError) as exc:
        log.error("Registration failed for %s: %s", req.user_id, exc)
        return _failure(500, CaptureErrorCode.SERVER_ERROR, "Failed to register user.")

    if outcome["outcome"] == "spoof":
        return _failure(
            200,
            CaptureErrorCode.LIVENESS_CHECK_ERROR,
            "Spoof attempt detected. Make sure a real face is in front of the camera.",
        )
    return {"success": True, "timestamp": _now_iso()}

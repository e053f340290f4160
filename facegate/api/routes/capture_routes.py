"""Capture API route -- identify a user from a camera frame."""
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator

from facegate.api.dependencies import get_config_service, get_recognition, get_tracker
from facegate.application.capture import process_capture
from facegate.domain.errors import FailureStoreError, RecognitionUnavailableError
from facegate.domain.recognition import CaptureErrorCode

router = APIRouter(prefix="/api", tags=["capture"])

log = logging.getLogger("facegate.capture")

USER_ID_MAX_LENGTH = 255
IMAGE_DATA_PATTERN = r"^data:image/(jpeg|png);base64,"


class CaptureRequest(BaseModel):
    userId: str = Field(..., min_length=1, max_length=USER_ID_MAX_LENGTH)
    imageData: str = Field(..., min_length=1, pattern=IMAGE_DATA_PATTERN)
    timestamp: int | None = None

    @field_validator("userId")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("userId must not be blank")
        return value


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _error(status_code: int, code: CaptureErrorCode, message: str, **extra) -> JSONResponse:
    body = {"success": False, "error": message, "errorCode": code.value}
    body.update({k: v for k, v in extra.items() if v is not None})
    return JSONResponse(status_code=status_code, content=body)


@router.post("/capture")
def api_capture(
    req: CaptureRequest,
    tracker=Depends(get_tracker),
    recognition=Depends(get_recognition),
    config_service=Depends(get_config_service),
):
    """Identify the user; enforce and update the failure lockout."""
    user_id = req.userId
    try:
        outcome = process_capture(user_id, req.imageData, tracker, recognition, config_service)
    except RecognitionUnavailableError as exc:
        log.error("Recognition unavailable for %s: %s", user_id, exc)
        return _error(
            500,
            CaptureErrorCode.SERVER_ERROR,
            "Recognition service temporarily unavailable. Please try again later.",
        )
    except FailureStoreError as exc:
        log.error("%s", exc)
        return _error(
            503,
            CaptureErrorCode.SERVER_ERROR,
            "Could not record this attempt. Please try again.",
        )

    if outcome["outcome"] == "locked":
        return _error(
            403,
            CaptureErrorCode.MAX_ATTEMPTS_EXCEEDED,
            "Maximum number of recognition attempts exceeded. Please contact support for assistance.",
            minutesRemaining=outcome["minutes_remaining"],
        )

    if outcome["outcome"] == "face_error":
        return _error(
            400,
            outcome["error_code"],
            outcome["message"],
            minutesRemaining=outcome["minutes_remaining"],
            data={
                "recognized": False,
                "confidence": 0,
                "userId": user_id,
                "timestamp": _now_iso(),
                "attemptsRemaining": outcome["attempts_remaining"],
            },
        )

    data = {
        "recognized": outcome["recognized"],
        "confidence": outcome["confidence"],
        "userId": outcome["user_id"],
        "timestamp": _now_iso(),
        "attemptsRemaining": outcome["attempts_remaining"],
    }
    if outcome["locked"]:
        data["minutesRemaining"] = outcome["minutes_remaining"]
    return {"success": True, "data": data}

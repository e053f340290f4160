"""Recognition value objects and Face API error code mapping."""
from enum import Enum


class CaptureErrorCode(str, Enum):
    INVALID_REQUEST = "INVALID_REQUEST"
    MAX_ATTEMPTS_EXCEEDED = "MAX_ATTEMPTS_EXCEEDED"
    SERVER_ERROR = "SERVER_ERROR"
    LIVENESS_CHECK_ERROR = "LIVENESS_CHECK_ERROR"
    FACE_BOUNDARY_ERROR = "FACE_BOUNDARY_ERROR"
    MULTIPLE_FACE_ERROR = "MULTIPLE_FACE_ERROR"
    FACE_NOT_FOUND = "FACE_NOT_FOUND"
    NOT_FOUND = "NOT_FOUND"


# Face API error_code -> (client error code, user-facing message)
FACE_API_ERRORS = {
    106: (CaptureErrorCode.LIVENESS_CHECK_ERROR, "Spoof attempt detected. Make sure a real face is in front of the camera."),
    107: (CaptureErrorCode.FACE_NOT_FOUND, "No face was found in the image."),
    108: (CaptureErrorCode.MULTIPLE_FACE_ERROR, "Several faces found. Keep only one face in the image."),
    109: (CaptureErrorCode.FACE_BOUNDARY_ERROR, "Face is not positioned correctly."),
}
SPOOF_ERROR_CODE = 106

_GENERIC_FACE_ERROR = (CaptureErrorCode.SERVER_ERROR, "Error processing image. Please try again.")


def map_face_api_error(code) -> tuple[CaptureErrorCode, str]:
    """Map a Face API error code (int or numeric string) to a client error."""
    try:
        key = int(code)
    except (TypeError, ValueError):
        return _GENERIC_FACE_ERROR
    return FACE_API_ERRORS.get(key, _GENERIC_FACE_ERROR)


class RecognitionResult:
    """Outcome of one identification request. Immutable."""

    def __init__(self, recognized: bool, confidence: float, user_id: str):
        self._recognized = recognized
        self._confidence = confidence
        self._user_id = user_id

    @property
    def recognized(self) -> bool:
        return self._recognized

    @property
    def confidence(self) -> float:
        return self._confidence

    @property
    def user_id(self) -> str:
        return self._user_id

    def to_dict(self) -> dict:
        return {
            "recognized": self._recognized,
            "confidence": self._confidence,
            "userId": self._user_id,
        }

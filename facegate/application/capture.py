"""Use case: identify a user from a captured image under the lockout policy."""
import logging

from facegate.domain.errors import FaceApiError
from facegate.domain.recognition import SPOOF_ERROR_CODE, map_face_api_error
from facegate.infrastructure.audit import log_event as audit_log

log = logging.getLogger("facegate.capture")


def _record_failure(tracker, user_id: str, reason: str) -> dict:
    """Record one failure and report the resulting lockout state.

    FailureStoreError propagates: the caller must know the failure was lost.
    """
    tracker.record_failure(user_id)
    remaining = tracker.get_remaining_attempts(user_id)
    locked = tracker.is_user_locked(user_id)
    minutes = tracker.get_minutes_until_expiry(user_id) if locked else None
    if locked:
        audit_log("user_locked", user_id, {"reason": reason, "minutes_remaining": minutes})
    return {"attempts_remaining": remaining, "locked": locked, "minutes_remaining": minutes}


def process_capture(user_id: str, image_data: str, tracker, recognition, config_service) -> dict:
    """
    Run one identification attempt.

    Returns an outcome dict whose ``outcome`` is one of:
      - "locked":     user is locked out; recognition was not attempted
      - "face_error": the Face API rejected the image; a failure was recorded
      - "completed":  recognition ran; ``recognized`` tells the result

    Raises RecognitionUnavailableError (nothing recorded) and
    FailureStoreError (failure could not be recorded).
    """
    if tracker.is_user_locked(user_id):
        minutes = tracker.get_minutes_until_expiry(user_id)
        log.debug("User is locked: %s (%s min remaining)", user_id, minutes)
        return {"outcome": "locked", "minutes_remaining": minutes}

    config = config_service.get_configuration()
    log.info("Starting recognition for user_id: %s", user_id)

    try:
        result = recognition.recognize(
            image_data,
            user_id,
            threshold=config_service.get_recognition_threshold(),
            use_mock=config.use_mock,
            face_api_url=config.face_api_url,
            face_api_key=config.face_api_key,
        )
    except FaceApiError as exc:
        error_code, message = map_face_api_error(exc.code)
        log.error("Face API error for %s: code=%s mapped=%s", user_id, exc.code, error_code.value)
        if exc.code == SPOOF_ERROR_CODE:
            log.info("Spoof attempted! user_id: %s", user_id)
            audit_log("spoof_attempt", user_id, {"stage": "capture"})
        state = _record_failure(tracker, user_id, error_code.value)
        return {
            "outcome": "face_error",
            "error_code": error_code,
            "message": message,
            **state,
        }

    audit_log(
        "recognition_attempt",
        user_id,
        {"recognized": result.recognized, "confidence": result.confidence},
    )
    log.info("user_id: %s, registration: false, recognized: %s", user_id, result.recognized)

    if result.recognized:
        if config_service.get_failure_reset_on_success():
            tracker.reset_failures(user_id)
            log.debug("Failure count reset for user: %s", user_id)
        state = {
            "attempts_remaining": tracker.get_remaining_attempts(user_id),
            "locked": False,
            "minutes_remaining": None,
        }
    else:
        state = _record_failure(tracker, user_id, "not_recognized")

    return {
        "outcome": "completed",
        "recognized": result.recognized,
        "confidence": result.confidence,
        "user_id": result.user_id,
        **state,
    }

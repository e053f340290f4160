"""Use cases: check and create a user's enrollment with the Face API."""
import logging

from facegate.domain.errors import FaceApiError
from facegate.domain.recognition import SPOOF_ERROR_CODE
from facegate.infrastructure.audit import log_event as audit_log

log = logging.getLogger("facegate.register")


class RegistrationCleanupError(RuntimeError):
    """A spoofed enrollment was detected but the created user could not be removed."""


def is_registered(client, user_id: str) -> bool:
    log.info("Checking user_id: %s registration status", user_id)
    return client.find_user(user_id) is not None


def register_user(client, tracker, user_id: str, image_data: str) -> dict:
    """
    Create the user, then attach the face template.

    Returns {"outcome": "registered"} or {"outcome": "spoof"}. On a spoof the
    just-created user is deleted again. Other Face API failures propagate.
    """
    internal_id = client.create_user(user_id)
    log.debug("User created: %s -> %s", user_id, internal_id)

    try:
        client.add_credential(internal_id, image_data)
    except FaceApiError as exc:
        if exc.code != SPOOF_ERROR_CODE:
            raise
        log.debug("Spoof detected during registration, deleting user %s", internal_id)
        try:
            client.delete_user(internal_id)
        except Exception as cleanup_exc:
            log.error("Failed to delete user %s after spoof detection: %s", internal_id, cleanup_exc)
            raise RegistrationCleanupError(internal_id) from cleanup_exc
        log.info("Spoof attempted! user_id: %s", user_id)
        audit_log("spoof_attempt", user_id, {"stage": "registration"})
        return {"outcome": "spoof"}

    # A freshly enrolled user starts with a clean slate.
    tracker.reset_failures(user_id)
    log.info("user_id: %s, registration: true", user_id)
    audit_log("user_registered", user_id, {"internal_id": internal_id})
    return {"outcome": "registered", "internal_id": internal_id}

"""FastAPI dependencies resolving the services owned by the app."""
from fastapi import HTTPException, Request, status

from facegate.domain.errors import RecognitionUnavailableError
from facegate.domain.recognition import CaptureErrorCode
from facegate.infrastructure.face_api import FaceApiClient


def get_config_service(request: Request):
    return request.app.state.config_service


def get_tracker(request: Request):
    return request.app.state.tracker


def get_recognition(request: Request):
    return request.app.state.recognition


def get_face_api_client(request: Request):
    """Yield a Face API client built from the current config snapshot.

    Raises 500 when FACE_API_URL / FACE_API_KEY are not configured.
    """
    config = request.app.state.config_service.get_configuration()
    factory = getattr(request.app.state, "face_api_client_factory", FaceApiClient)
    try:
        client = factory(config.face_api_url, config.face_api_key)
    except RecognitionUnavailableError:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "error": "Face recognition API is not configured.",
                "errorCode": CaptureErrorCode.SERVER_ERROR.value,
            },
        )
    try:
        yield client
    finally:
        client.close()

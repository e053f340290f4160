"""Face API client and recognition service.

The Face API speaks JSON over HTTPS, authenticates with an ``X-API-Key``
header and reports application errors in an ``error_code`` field (0 = OK).

Endpoints used:
  GET    /api/v1/users?include=credentials&external_id=<id>&limit=1
  POST   /api/v1/users             {external_id}
  DELETE /api/v1/users/<internal id>
  POST   /api/v1/credentials       {user_id, biometric_data, ...}
  POST   /api/v1/identify          {biometric_data, external_id}
"""
import logging
import random
import time

import requests

from facegate.domain.errors import FaceApiError, RecognitionUnavailableError
from facegate.domain.recognition import RecognitionResult

log = logging.getLogger("facegate.face_api")

REQUEST_TIMEOUT_SECONDS = 10
IMAGE_DATA_PREFIXES = ("data:image/jpeg;base64,", "data:image/png;base64,")


def split_data_uri(image_data: str) -> tuple[str, str]:
    """Return (datatype, base64 payload) for a ``data:image/...;base64,`` URI."""
    header, _, payload = image_data.partition(",")
    if not header.startswith("data:image/") or not payload:
        raise ValueError("Image data must be a base64 data URI")
    subtype = header[len("data:image/"):].split(";", 1)[0].lower()
    return ("jpg" if subtype in ("jpeg", "jpg") else subtype), payload


def _error_code(body: dict):
    code = body.get("error_code")
    try:
        return int(code)
    except (TypeError, ValueError):
        return code


class FaceApiClient:
    """Thin wrapper over the Face API REST endpoints."""

    def __init__(self, base_url: str, api_key: str, session: requests.Session | None = None, timeout: float = REQUEST_TIMEOUT_SECONDS):
        if not base_url or not api_key:
            raise RecognitionUnavailableError("Face API is not configured")
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._session = session or requests.Session()
        self._timeout = timeout

    def _request(self, method: str, path: str, **kwargs) -> tuple[int, dict]:
        url = f"{self._base_url}{path}"
        headers = {"X-API-Key": self._api_key}
        try:
            resp = self._session.request(method, url, headers=headers, timeout=self._timeout, **kwargs)
        except requests.Timeout as exc:
            raise RecognitionUnavailableError("Face API request timed out") from exc
        except requests.RequestException as exc:
            raise RecognitionUnavailableError(f"Unable to reach Face API: {type(exc).__name__}") from exc
        try:
            body = resp.json()
        except ValueError:
            body = {}
        log.debug("%s %s -> %s error_code=%s", method, path, resp.status_code, body.get("error_code"))
        return resp.status_code, body

    def _checked(self, method: str, path: str, **kwargs) -> dict:
        status, body = self._request(method, path, **kwargs)
        code = _error_code(body)
        if code not in (0, None):
            raise FaceApiError(code, body.get("error_message", ""))
        if status >= 400 or code is None:
            raise RecognitionUnavailableError(f"Face API returned HTTP {status}")
        return body

    # ------------------------------------------------------------------
    # Users & credentials
    # ------------------------------------------------------------------

    def find_user(self, external_id: str) -> dict | None:
        status, body = self._request(
            "GET",
            "/api/v1/users",
            params={"include": "credentials", "external_id": external_id, "limit": 1},
        )
        if status >= 400:
            raise RecognitionUnavailableError(f"Face API returned HTTP {status}")
        users = body.get("users")
        if isinstance(users, list) and users:
            return users[0]
        return None

    def create_user(self, external_id: str) -> str:
        """Create a user and return the Face API's internal id."""
        body = self._checked("POST", "/api/v1/users", json={"external_id": external_id})
        internal_id = (body.get("user") or {}).get("id")
        if not internal_id:
            raise RecognitionUnavailableError("Face API create-user response has no user id")
        return str(internal_id)

    def delete_user(self, internal_id: str) -> int:
        body = self._checked("DELETE", f"/api/v1/users/{internal_id}")
        return int(body.get("delete_count", 0))

    def add_credential(self, internal_id: str, image_data: str) -> dict:
        datatype, payload = split_data_uri(image_data)
        return self._checked(
            "POST",
            "/api/v1/credentials",
            json={
                "user_id": internal_id,
                "get_quality": [],
                "suppress_liveness": False,
                "biometric_data": {"modality": "face", "datatype": datatype, "data": payload},
            },
        )

    def identify(self, external_id: str, image_data: str) -> float:
        """Return the best match score (0-100) for *external_id*, 0 if absent."""
        datatype, payload = split_data_uri(image_data)
        body = self._checked(
            "POST",
            "/api/v1/identify",
            json={
                "external_id": external_id,
                "biometric_data": {"modality": "face", "datatype": datatype, "data": payload},
            },
        )
        best = 0.0
        for candidate in body.get("candidates") or []:
            if str(candidate.get("external_id")) != external_id:
                continue
            try:
                best = max(best, float(candidate.get("score", 0)))
            except (TypeError, ValueError):
                continue
        return best

    def close(self) -> None:
        self._session.close()


class RecognitionService:
    """Identify a user either through the Face API or a random mock."""

    def __init__(self, client_factory=FaceApiClient, mock_delay: tuple[float, float] = (0.5, 1.5), rng: random.Random | None = None):
        self._client_factory = client_factory
        self._mock_delay = mock_delay
        self._rng = rng or random.Random()

    def recognize(
        self,
        image_data: str,
        user_id: str,
        threshold: int = 70,
        use_mock: bool = False,
        face_api_url: str = "",
        face_api_key: str = "",
        force_failure: bool = False,
    ) -> RecognitionResult:
        """Raises FaceApiError or RecognitionUnavailableError."""
        if use_mock:
            return self._mock_recognize(image_data, user_id, threshold, force_failure)

        client = self._client_factory(face_api_url, face_api_key)
        try:
            confidence = client.identify(user_id, image_data)
        except ValueError as exc:
            raise FaceApiError(None, str(exc)) from exc
        finally:
            client.close()
        return RecognitionResult(confidence >= threshold, confidence, user_id)

    def _mock_recognize(self, image_data: str, user_id: str, threshold: int, force_failure: bool) -> RecognitionResult:
        if not isinstance(image_data, str) or not image_data.startswith("data:image/"):
            raise FaceApiError(None, "Image data must be a valid data URI")

        low, high = self._mock_delay
        if high > 0:
            time.sleep(self._rng.uniform(low, high))

        if force_failure:
            confidence = self._rng.randrange(threshold) if threshold > 0 else 0
        else:
            confidence = self._rng.randint(0, 100)
        recognized = confidence >= threshold
        log.debug("Mock recognition: user=%s recognized=%s confidence=%s threshold=%s", user_id, recognized, confidence, threshold)
        return RecognitionResult(recognized, confidence, user_id)

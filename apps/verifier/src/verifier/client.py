from __future__ import annotations

import logging
from typing import Any, Protocol
from urllib.parse import quote

import httpx

from verifier.services.watch.errors import (
    ApiResponseError,
    ClassLookupError,
    ClassNotDeclaredError,
    ClassNotFoundError,
    FatalPollError,
    InvalidClassHashError,
    NetworkUnavailableError,
    PayloadTooLargeError,
    RemoteJobNotFoundError,
    TransientPollError,
)
from verifier.services.watch.status import JobStatus
from verifier.services.watch.submitter import MAX_PAYLOAD_BYTES
from verifier.services.watch.types import ClassVerificationInfo, RemoteJobStatus, SubmissionRequest

logger = logging.getLogger(__name__)

NETWORK_URLS = {
    "mainnet": "https://api.voyager.online/beta",
    "sepolia": "https://sepolia-api.voyager.online/beta",
    "dev": "https://dev-api.voyager.online/beta",
}
CUSTOM_NETWORK = "custom"


def resolve_api_url(network: str | None, url: str | None) -> str:
    if url:
        return url
    if network is None:
        raise ValueError("either a network or an API url is required")
    try:
        return NETWORK_URLS[network.strip().lower()]
    except KeyError as exc:
        known = ", ".join(sorted(NETWORK_URLS))
        raise ValueError(f"unknown network {network!r} (expected one of: {known})") from exc


def network_from_url(url: str) -> str:
    lowered = url.lower()
    if "sepolia" in lowered:
        return "sepolia"
    if "dev" in lowered:
        return "dev"
    if "mainnet" in lowered or "api.voyager.online" in lowered:
        return "mainnet"
    return CUSTOM_NETWORK


class VerificationClient(Protocol):
    def submit(self, request: SubmissionRequest) -> str: ...

    def get_status(self, job_id: str) -> RemoteJobStatus: ...

    def check_class(self, class_hash: str) -> ClassVerificationInfo: ...


def _error_detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text.strip() or f"HTTP {response.status_code}"
    if isinstance(payload, dict):
        for key in ("error", "message", "detail"):
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return response.text.strip() or f"HTTP {response.status_code}"


def _optional_str(payload: dict[str, Any], *keys: str) -> str | None:
    for key in keys:
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            return value
    return None


def _optional_float(payload: dict[str, Any], key: str) -> float | None:
    value = payload.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def parse_job_status(payload: Any, *, job_id: str) -> RemoteJobStatus:
    if not isinstance(payload, dict):
        raise FatalPollError("Invalid job status payload: expected an object", job_id=job_id)
    try:
        status = JobStatus.parse(payload.get("status"))
    except ValueError as exc:
        raise FatalPollError(f"Invalid job status payload: {exc}", job_id=job_id) from exc

    return RemoteJobStatus(
        job_id=str(payload.get("job_id") or job_id),
        status=status,
        message=_optional_str(payload, "message"),
        error_category=_optional_str(payload, "error_category"),
        status_description=_optional_str(payload, "status_description"),
        class_hash=_optional_str(payload, "class_hash"),
        contract_name=_optional_str(payload, "name", "contract_name"),
        cairo_version=_optional_str(payload, "version", "cairo_version"),
        build_tool=_optional_str(payload, "build_tool"),
        created_timestamp=_optional_float(payload, "created_timestamp"),
        updated_timestamp=_optional_float(payload, "updated_timestamp"),
    )


def parse_class_info(payload: Any, *, class_hash: str) -> ClassVerificationInfo:
    if not isinstance(payload, dict):
        raise ClassLookupError("Invalid class payload: expected an object")
    return ClassVerificationInfo(
        class_hash=class_hash,
        verified=payload.get("verified") is True,
        name=_optional_str(payload, "name", "contract_name"),
        version=_optional_str(payload, "version", "compiler_version"),
        license=_optional_str(payload, "license"),
        contract_file=_optional_str(payload, "contract_file"),
        verified_timestamp=_optional_float(payload, "verified_timestamp"),
    )


def build_submission_body(request: SubmissionRequest) -> dict[str, Any]:
    body: dict[str, Any] = {
        "compiler_version": request.cairo_version,
        "scarb_version": request.scarb_version,
        "package_name": request.package or "",
        "name": request.contract_name,
        "contract_file": request.contract_file,
        "contract-name": request.contract_file,
        "project_dir_path": request.project_dir_path,
        "build_tool": request.build_tool,
        "license": request.license or "NONE",
        "files": dict(request.files),
    }
    if request.dojo_version:
        body["dojo_version"] = request.dojo_version
    return body


class HttpVerificationClient:
    def __init__(self, *, base_url: str, timeout_seconds: float = 30.0) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds

    @property
    def base_url(self) -> str:
        return self._base_url

    def submit(self, request: SubmissionRequest) -> str:
        url = f"{self._base_url}/class-verify/{quote(request.class_hash, safe='')}"
        logger.debug("submitting verification url=%s files=%s", url, len(request.files))

        try:
            response = httpx.post(url, json=build_submission_body(request), timeout=self._timeout_seconds)
        except httpx.TransportError as exc:
            raise NetworkUnavailableError(f"could not reach verification API at {url}: {exc}") from exc

        if response.status_code == 413:
            raise PayloadTooLargeError(
                f"Request payload too large. Maximum allowed size is {MAX_PAYLOAD_BYTES // (1024 * 1024)}MB."
            )
        if response.status_code == 400:
            detail = _error_detail(response)
            lowered = detail.lower()
            if "not declared" in lowered:
                raise ClassNotDeclaredError(f"Class hash {request.class_hash} is not declared: {detail}")
            if "class hash" in lowered or "class_hash" in lowered:
                raise InvalidClassHashError(detail)
            raise ApiResponseError(400, detail)
        if response.status_code != 200:
            raise ApiResponseError(response.status_code, _error_detail(response))

        try:
            payload = response.json()
        except ValueError as exc:
            raise ApiResponseError(response.status_code, "submission response is not valid JSON") from exc

        job_id = payload.get("job_id") if isinstance(payload, dict) else None
        if not isinstance(job_id, str) or not job_id.strip():
            raise ApiResponseError(response.status_code, "submission response is missing job_id")
        return job_id.strip()

    def get_status(self, job_id: str) -> RemoteJobStatus:
        url = f"{self._base_url}/class-verify/job/{quote(job_id, safe='')}"

        try:
            response = httpx.get(url, timeout=self._timeout_seconds)
        except httpx.TransportError as exc:
            raise TransientPollError(f"status request failed for job {job_id}: {exc}") from exc

        if response.status_code == 404:
            raise RemoteJobNotFoundError(f"job {job_id} not found on verification API", job_id=job_id)
        if response.status_code == 429 or response.status_code >= 500:
            raise TransientPollError(
                f"verification API returned {response.status_code} for job {job_id}: {_error_detail(response)}"
            )
        if response.status_code != 200:
            raise FatalPollError(
                f"verification API returned {response.status_code}: {_error_detail(response)}",
                job_id=job_id,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise FatalPollError("job status response is not valid JSON", job_id=job_id) from exc

        status = parse_job_status(payload, job_id=job_id)
        logger.debug("job status job_id=%s status=%s", status.job_id, status.status.value)
        return status

    def check_class(self, class_hash: str) -> ClassVerificationInfo:
        """Look up whether a declared class already has verified sources."""
        url = f"{self._base_url}/classes/{quote(class_hash, safe='')}"

        try:
            response = httpx.get(url, timeout=self._timeout_seconds)
        except httpx.TransportError as exc:
            raise ClassLookupError(f"could not reach verification API at {url}: {exc}") from exc

        if response.status_code == 404:
            raise ClassNotFoundError(class_hash)
        if response.status_code != 200:
            raise ClassLookupError(
                f"verification API returned {response.status_code}: {_error_detail(response)}"
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise ClassLookupError("class response is not valid JSON") from exc
        return parse_class_info(payload, class_hash=class_hash)

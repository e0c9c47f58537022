from typing import Any, Dict, Optional
import logging
import os

import openai
import requests

from recallbot.exceptions import (
    BackendBadStatus,
    BackendConnectionRefused,
    BackendError,
    BackendTimeout,
    MalformedResponse,
)

logger = logging.getLogger(__name__)


def get_api_key(model_name: str, model_base_url: str) -> str:
    if is_openai_model(model_name, model_base_url):
        return get_openai_api_key()
    else:
        logger.debug(
            f"Model {model_name} is served locally; returning NotRequired for API key."
        )
        return "NotRequired"


def is_openai_model(model_name: str, model_base_url: Optional[str]) -> bool:
    return (model_base_url is None and "gpt" in model_name) or (
        model_base_url is not None and "api.openai.com" in model_base_url
    )


def get_openai_api_key():
    if os.environ.get('OPENAI_API_KEY'):
        return os.environ['OPENAI_API_KEY']
    else:
        raise ValueError('OPENAI_API_KEY is not set')


def translate_requests_error(exc: requests.RequestException, provider: str) -> BackendError:
    """Convert a `requests` failure into the matching backend error kind."""
    if isinstance(exc, requests.Timeout):
        return BackendTimeout(f"Request to {provider} timed out: {exc}")
    if isinstance(exc, requests.ConnectionError):
        return BackendConnectionRefused(f"Cannot connect to {provider}. Is it running? ({exc})")
    if isinstance(exc, requests.HTTPError) and exc.response is not None:
        return BackendBadStatus(
            exc.response.status_code,
            f"{provider} API error: {exc.response.status_code}",
        )
    return BackendError(f"Unexpected error with {provider}: {exc}")


def translate_openai_error(exc: openai.OpenAIError, provider: str) -> BackendError:
    """Convert an `openai` SDK failure into the matching backend error kind."""
    # APITimeoutError subclasses APIConnectionError, so it is checked first.
    if isinstance(exc, openai.APITimeoutError):
        return BackendTimeout(f"Request to {provider} timed out: {exc}")
    if isinstance(exc, openai.APIConnectionError):
        return BackendConnectionRefused(f"Cannot connect to {provider}. Is it running? ({exc})")
    if isinstance(exc, openai.APIStatusError):
        return BackendBadStatus(exc.status_code, f"{provider} API error: {exc.status_code}")
    if isinstance(exc, openai.APIResponseValidationError):
        return MalformedResponse(f"Invalid response format from {provider}: {exc}")
    return BackendError(f"Unexpected error with {provider}: {exc}")


def request_json(
    session: requests.Session,
    method: str,
    url: str,
    *,
    provider: str,
    timeout: float,
    payload: Optional[Dict[str, Any]] = None,
) -> Any:
    """Send an HTTP request and return the decoded JSON body.

    Raises
    ------
    BackendTimeout, BackendConnectionRefused, BackendBadStatus
        On transport failures or non-2xx responses.
    MalformedResponse
        If the body is not valid JSON.
    """
    logger.debug("[%s] %s %s", provider, method.upper(), url)
    try:
        response = session.request(method, url, json=payload, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as exc:
        raise translate_requests_error(exc, provider) from exc
    logger.debug("[%s] Response received: %s", provider, response.status_code)
    try:
        return response.json()
    except ValueError as exc:
        raise MalformedResponse(f"{provider} returned a non-JSON body.") from exc


def join_url(base_url: str, path: str) -> str:
    return base_url.rstrip("/") + "/" + path.lstrip("/")

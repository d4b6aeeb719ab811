"""Shared configuration and utilities for the ReviewAI bot."""

import functools
import json
import logging
import os
import re
import time
from dataclasses import dataclass

import httpx
from dotenv import load_dotenv
from google import genai
from google.genai import errors as genai_errors
from google.api_core.exceptions import (
    DeadlineExceeded,
    InternalServerError,
    ServiceUnavailable,
    TooManyRequests,
)
from pydantic import ValidationError

from models import ReviewResult

# ---------------------------------------------------------------------------
# Environment & logging (initialised once on first import)
# ---------------------------------------------------------------------------
load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
USE_MOCK: bool = os.getenv("USE_MOCK", "false").lower() == "true"
DEFAULT_MODEL: str = os.getenv("GEMINI_MODEL", "gemini-2.5-flash-lite")
DEFAULT_DB_PATH: str = os.getenv("REVIEW_DB_PATH", ".reviewai/state.db")

# Repo format: "owner/repo"
_REPO_PATTERN = re.compile(r"^[\w.-]+/[\w.-]+$")

# Gemini errors worth retrying (transient / rate-limit / network)
RETRYABLE_GEMINI_ERRORS: tuple[type[Exception], ...] = (
    ServiceUnavailable,
    TooManyRequests,
    DeadlineExceeded,
    InternalServerError,
    genai_errors.ServerError,
    httpx.TransportError,
)


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


# ---------------------------------------------------------------------------
# Review configuration
# ---------------------------------------------------------------------------
@dataclass
class ReviewConfig:
    """Behaviour switches for the review bot."""

    auto_merge: bool = False
    auto_fix: bool = True
    daily_review: bool = True
    analyzer: str = "static"  # static | gemini
    max_workers: int = 1  # >1 parallelises fetch+analyze of PR files
    model: str = DEFAULT_MODEL

    @classmethod
    def from_env(cls) -> "ReviewConfig":
        """Build a config from environment variables (and ``.env``)."""
        return cls(
            auto_merge=_env_flag("AUTO_MERGE", False),
            auto_fix=_env_flag("AUTO_FIX", True),
            daily_review=_env_flag("DAILY_REVIEW", True),
            analyzer=os.getenv("ANALYZER", "static").strip().lower(),
            max_workers=max(1, int(os.getenv("REVIEW_MAX_WORKERS", "1"))),
            model=DEFAULT_MODEL,
        )


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------
def validate_repo(repo: str) -> str:
    """Validate repository string matches 'owner/repo' format.

    Returns *repo* unchanged on success; raises ``ValueError`` otherwise.
    """
    if not _REPO_PATTERN.match(repo):
        raise ValueError(
            f"Invalid repo format: {repo!r}. Expected 'owner/repo' "
            f"(e.g. 'octocat/hello-world')."
        )
    return repo


def split_repo(repo: str) -> tuple[str, str]:
    """Split a validated 'owner/repo' string into its two parts."""
    owner, name = validate_repo(repo).split("/", 1)
    return owner, name


# ---------------------------------------------------------------------------
# Retry decorator
# ---------------------------------------------------------------------------
def with_retry(
    max_retries: int = 3,
    base_delay: float = 1.0,
    retryable: tuple[type[Exception], ...] = (Exception,),
):
    """Decorator: retry a function with exponential back-off."""

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            last_exc: Exception | None = None
            for attempt in range(max_retries):
                try:
                    return func(*args, **kwargs)
                except retryable as exc:
                    last_exc = exc
                    if attempt < max_retries - 1:
                        delay = base_delay * (2**attempt)
                        logger.warning(
                            "Attempt %d/%d for %s failed: %s. Retrying in %.1fs...",
                            attempt + 1,
                            max_retries,
                            func.__name__,
                            exc,
                            delay,
                        )
                        time.sleep(delay)
            raise last_exc  # type: ignore[misc]

        return wrapper

    return decorator


# ---------------------------------------------------------------------------
# Cached API clients
# ---------------------------------------------------------------------------
@functools.lru_cache(maxsize=1)
def get_gemini_client() -> genai.Client:
    """Return a cached Gemini client (created once per process)."""
    api_key = os.getenv("GEMINI_API_KEY")
    if not api_key:
        raise ValueError("GEMINI_API_KEY not found. Set it in .env file.")
    return genai.Client(api_key=api_key)


# ---------------------------------------------------------------------------
# Gemini API call (with retry)
# ---------------------------------------------------------------------------
@with_retry(max_retries=3, base_delay=2.0, retryable=RETRYABLE_GEMINI_ERRORS)
def call_gemini(prompt: str, model: str = DEFAULT_MODEL) -> str:
    """Call Gemini and return the raw response text.

    Retries automatically on transient API errors.
    """
    client = get_gemini_client()
    response = client.models.generate_content(
        model=model,
        contents=prompt,
        config={"response_mime_type": "application/json"},
    )
    return response.text


# ---------------------------------------------------------------------------
# LLM response parsing
# ---------------------------------------------------------------------------
def extract_json_object(text: str) -> dict | None:
    """Return the first JSON object embedded in *text*, or ``None``."""
    start = text.find("{")
    if start == -1:
        logger.warning("No JSON object found in LLM response")
        return None

    try:
        decoder = json.JSONDecoder()
        obj, _ = decoder.raw_decode(text[start:])
    except json.JSONDecodeError as e:
        logger.warning("JSON decode error: %s", e)
        logger.debug("Raw response: %s", text)
        return None
    return obj if isinstance(obj, dict) else None


def parse_llm_json(text: str) -> ReviewResult | None:
    """Extract the first JSON object from *text* and validate as ReviewResult."""
    obj = extract_json_object(text)
    if obj is None:
        return None

    try:
        return ReviewResult.model_validate(obj)
    except ValidationError as e:
        logger.warning("Pydantic validation error: %s", e)
        return None

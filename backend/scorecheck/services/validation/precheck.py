"""Automated photo pre-check.

Wraps the external vision model behind one call. The answer is advisory:
anything other than a well-formed reply comes back as ``UNAVAILABLE`` and
the submission falls through to community review. There are no retries.
"""

import base64
import binascii
import enum
import json
from dataclasses import dataclass
from typing import Optional, Union

import httpx
from flask import current_app


MAX_MACHINE_NAME_LENGTH = 100


class Confidence(str, enum.Enum):
    NONE = 'none'
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'

    @classmethod
    def parse(cls, raw) -> 'Confidence':
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            return cls.NONE


@dataclass(frozen=True)
class Photo:
    content: bytes
    mime_type: str = 'image/jpeg'

    @classmethod
    def from_data_url(cls, data_url: str) -> 'Photo':
        """Decode a ``data:image/...;base64,`` URL as sent by the capture page."""
        if not isinstance(data_url, str) or not data_url.startswith('data:image/'):
            raise ValueError('photo must be a data:image/ URL')
        header, _, encoded = data_url.partition(',')
        if ';base64' not in header or not encoded:
            raise ValueError('photo must be base64 encoded')
        try:
            content = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValueError('photo is not valid base64') from exc
        return cls(content=content, mime_type=header[len('data:'):].split(';')[0])

    def to_data_url(self) -> str:
        return f"data:{self.mime_type};base64,{base64.b64encode(self.content).decode('ascii')}"


@dataclass(frozen=True)
class PrecheckResult:
    machine_match: bool
    score_match: bool
    machine_confidence: Confidence = Confidence.NONE
    score_confidence: Confidence = Confidence.NONE

    @property
    def full_match(self) -> bool:
        return self.machine_match and self.score_match


class _Unavailable:
    """The service gave no opinion."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self):
        return False

    def __repr__(self):
        return 'UNAVAILABLE'


UNAVAILABLE = _Unavailable()

PrecheckOutcome = Union[PrecheckResult, _Unavailable]


PROMPT_TEMPLATE = """Analyze this pinball/arcade machine backglass or display photo and validate the following:

1. MACHINE NAME: Does this image show the machine "{machine}"? Look for:
   - The machine's name/title on the backglass
   - Recognizable artwork, characters, or themes associated with this machine
   - Any text or branding that identifies the machine

2. SCORE: Is the score {score:,} visible in this image? Look for:
   - Player score displays (usually numbered 1, 2, 3, 4)
   - High score displays
   - Any numeric displays showing this exact score

Return ONLY a JSON object with:
{{
  "machineMatch": boolean (true if the machine name matches or is clearly this machine),
  "scoreMatch": boolean (true if the exact score {score:,} is visible),
  "detectedMachine": string (the machine name you can see, or null if unclear),
  "detectedScores": array of numbers (all scores visible in the image),
  "confidence": {{
    "machine": "high" | "medium" | "low" | "none",
    "score": "high" | "medium" | "low" | "none"
  }}
}}

IMPORTANT: Return ONLY the JSON object, no other text."""


def _strip_code_fence(content: str) -> str:
    cleaned = content.strip()
    if cleaned.startswith('```json'):
        cleaned = cleaned[7:]
    if cleaned.startswith('```'):
        cleaned = cleaned[3:]
    if cleaned.endswith('```'):
        cleaned = cleaned[:-3]
    return cleaned.strip()


def parse_validation_reply(content: str) -> PrecheckOutcome:
    """Turn the model's text answer into a result, or UNAVAILABLE if malformed."""
    try:
        data = json.loads(_strip_code_fence(content))
    except (TypeError, ValueError):
        return UNAVAILABLE
    if not isinstance(data, dict):
        return UNAVAILABLE
    machine_match = data.get('machineMatch')
    score_match = data.get('scoreMatch')
    if not isinstance(machine_match, bool) or not isinstance(score_match, bool):
        return UNAVAILABLE
    confidence = data.get('confidence') if isinstance(data.get('confidence'), dict) else {}
    return PrecheckResult(
        machine_match=machine_match,
        score_match=score_match,
        machine_confidence=Confidence.parse(confidence.get('machine')),
        score_confidence=Confidence.parse(confidence.get('score')),
    )


class VisionPrecheck:
    """Client for the vision gateway, set up like a Flask extension.

    Usage:
        precheck = VisionPrecheck()
        precheck.init_app(app)
        outcome = precheck.run(photo, 'Medieval Madness', 52_340_110)
    """

    def __init__(self, url=None, api_key=None, model=None, timeout=15.0,
                 max_image_bytes=6 * 1024 * 1024, transport: Optional[httpx.BaseTransport] = None):
        self.url = url
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.max_image_bytes = max_image_bytes
        self.transport = transport

    def init_app(self, app, transport: Optional[httpx.BaseTransport] = None):
        self.url = app.config.get('PRECHECK_URL') or None
        self.api_key = app.config.get('PRECHECK_API_KEY') or None
        self.model = app.config.get('PRECHECK_MODEL')
        self.timeout = float(app.config.get('PRECHECK_TIMEOUT_SEC', 15))
        self.max_image_bytes = int(app.config.get('PRECHECK_MAX_IMAGE_BYTES', self.max_image_bytes))
        if transport is not None:
            self.transport = transport
        app.extensions['precheck'] = self

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    def _build_request(self, photo: Photo, claimed_machine: str, claimed_value: int) -> dict:
        return {
            'model': self.model,
            'messages': [
                {
                    'role': 'user',
                    'content': [
                        {'type': 'text', 'text': PROMPT_TEMPLATE.format(machine=claimed_machine, score=claimed_value)},
                        {'type': 'image_url', 'image_url': {'url': photo.to_data_url()}},
                    ],
                }
            ],
            'max_tokens': 1000,
        }

    def run(self, photo: Photo, claimed_machine: str, claimed_value: int) -> PrecheckOutcome:
        log = current_app.logger
        if not self.enabled:
            log.info("[precheck-skip] reason=not_configured")
            return UNAVAILABLE
        if not photo.mime_type.startswith('image/') or len(photo.content) > self.max_image_bytes:
            log.info(f"[precheck-skip] reason=photo_rejected mime={photo.mime_type} bytes={len(photo.content)}")
            return UNAVAILABLE
        if not claimed_machine or len(claimed_machine) > MAX_MACHINE_NAME_LENGTH:
            log.info("[precheck-skip] reason=machine_name")
            return UNAVAILABLE

        headers = {'Content-Type': 'application/json'}
        if self.api_key:
            headers['Authorization'] = f"Bearer {self.api_key}"
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.post(self.url, json=self._build_request(photo, claimed_machine, claimed_value), headers=headers)
                response.raise_for_status()
                body = response.json()
        except httpx.TimeoutException:
            log.warning(f"[precheck-unavailable] reason=timeout timeout={self.timeout}s")
            return UNAVAILABLE
        except httpx.HTTPStatusError as exc:
            log.warning(f"[precheck-unavailable] reason=status status={exc.response.status_code}")
            return UNAVAILABLE
        except (httpx.HTTPError, ValueError) as exc:
            log.warning(f"[precheck-unavailable] reason=error error={exc!r}")
            return UNAVAILABLE

        try:
            content = body['choices'][0]['message']['content']
        except (KeyError, IndexError, TypeError):
            log.warning("[precheck-unavailable] reason=malformed_envelope")
            return UNAVAILABLE
        outcome = parse_validation_reply(content)
        if outcome is UNAVAILABLE:
            log.warning("[precheck-unavailable] reason=malformed_reply")
        else:
            log.info(
                f"[precheck] machine_match={outcome.machine_match} score_match={outcome.score_match} "
                f"confidence={outcome.machine_confidence.value}/{outcome.score_confidence.value}"
            )
        return outcome

import hashlib
import json
import logging
import re
import sys
import time
from typing import Any, Dict

from .config import get_settings

# LogRecord attributes that are not user supplied extras
_RESERVED = set(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    """JSON formatter that keeps patient identifiers out of the log stream."""

    def __init__(self):
        super().__init__()
        self.redaction_patterns = [
            # Literal references to patient-bearing resources
            (re.compile(r'\b((?:Patient|RelatedPerson|Person)/[A-Za-z0-9\-.]{1,64})'), 'reference'),
            # "identifier": [{"value": "..."}] fragments echoed in messages
            (re.compile(r'"value"\s*:\s*"([^"]+)"\s*,\s*"system"'), 'identifier'),
            (re.compile(r'(?i)\b(?:mrn|ssn|bsn)\s*[=:]\s*["\']?([^"\s,}]+)'), 'identifier'),
        ]

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "ts": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(record.created)),
            "level": record.levelname,
            "logger": record.name,
            "message": self._redact_sensitive_data(record.getMessage()),
        }

        for key, value in record.__dict__.items():
            if key in _RESERVED or key.startswith("_"):
                continue
            if isinstance(value, str):
                payload[key] = self._redact_sensitive_data(value)
            elif isinstance(value, dict):
                payload[key] = self._redact_dict(value)
            else:
                payload[key] = value

        if record.exc_info:
            exc_text = self.formatException(record.exc_info)
            payload["exc_info"] = self._redact_sensitive_data(exc_text)

        return json.dumps(payload, ensure_ascii=False, default=str)

    def _redact_sensitive_data(self, text: str) -> str:
        if not isinstance(text, str):
            return text

        redacted_text = text
        for pattern, field_type in self.redaction_patterns:
            for identifier in pattern.findall(redacted_text):
                if identifier:
                    digest = hashlib.sha256(identifier.encode()).hexdigest()[:8]
                    redacted_text = redacted_text.replace(identifier, f"[REDACTED_{field_type.upper()}_{digest}]")
        return redacted_text

    def _redact_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively redact identifier-like values from dictionary structures."""
        redacted_dict = {}

        for key, value in data.items():
            key_lower = key.lower()

            if any(sensitive in key_lower for sensitive in ['patient', 'subject', 'identifier', 'mrn', 'ssn']):
                redacted_dict[key] = "[REDACTED]"
            elif isinstance(value, str):
                redacted_dict[key] = self._redact_sensitive_data(value)
            elif isinstance(value, dict):
                redacted_dict[key] = self._redact_dict(value)
            elif isinstance(value, list):
                redacted_dict[key] = [
                    self._redact_dict(item) if isinstance(item, dict)
                    else self._redact_sensitive_data(item) if isinstance(item, str)
                    else item
                    for item in value
                ]
            else:
                redacted_dict[key] = value

        return redacted_dict


def setup_logging() -> None:
    settings = get_settings()
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

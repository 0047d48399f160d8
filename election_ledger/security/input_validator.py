# election_ledger/security/input_validator.py

import re
import html
import bleach

from election_ledger.database.models import MAX_CANDIDATES
from election_ledger.errors import ValidationError

# Input validation and sanitization for everything that ends up in a ledger
# record: names, emails, election text, candidate lists and numeric ids.

MAX_NAME = 64
MAX_EMAIL = 128
MAX_TITLE = 128
MAX_DESCRIPTION = 512
MAX_CANDIDATE_NAME = 64
MAX_MANIFESTO = 4096
MAX_QUESTION = 256
MAX_COMMENT = 1024


class InputValidator:
    def __init__(self):
        self.allowed_html_tags = ['b', 'i', 'em', 'strong', 'p', 'br']
        self.allowed_html_attributes = {}

        self.patterns = {
            'email': re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'),
            'xss_script': re.compile(r'<script[^>]*>.*?</script>', re.IGNORECASE | re.DOTALL),
            'xss_event': re.compile(r'\bon\w+\s*=', re.IGNORECASE)
        }

    def sanitize_string(self, input_str, max_length=255):
        if not isinstance(input_str, str):
            raise ValidationError("Input must be a string")
        if len(input_str) > max_length:
            input_str = input_str[:max_length]

        sanitized = re.sub(self.patterns['xss_script'], '', input_str)
        sanitized = re.sub(self.patterns['xss_event'], '', sanitized)
        sanitized = bleach.clean(sanitized, tags=self.allowed_html_tags,
                                 attributes=self.allowed_html_attributes, strip=True)
        # bleach escapes &, < and >; records keep the plain text
        return html.unescape(sanitized).strip()

    def require_text(self, value, field, max_length):
        text = self.sanitize_string(value, max_length=max_length)
        if not text:
            raise ValidationError(f"{field} is required")
        return text

    def validate_email(self, email):
        return (isinstance(email, str) and len(email) <= MAX_EMAIL
                and bool(self.patterns['email'].match(email)))

    def require_email(self, email):
        if not self.validate_email(email):
            raise ValidationError(f"Invalid email address: {email!r}")
        return email

    def parse_id(self, value, field='id'):
        if isinstance(value, bool):
            raise ValidationError(f"{field} must be a positive integer")
        try:
            parsed = int(value)
        except (TypeError, ValueError):
            raise ValidationError(f"{field} must be a positive integer, got {value!r}")
        if isinstance(value, float) and value != parsed:
            raise ValidationError(f"{field} must be a positive integer, got {value!r}")
        if not 1 <= parsed <= 0xFFFFFFFF:
            raise ValidationError(f"{field} out of range: {parsed}")
        return parsed

    def validate_candidates(self, candidates):
        if not isinstance(candidates, (list, tuple)) or not candidates:
            raise ValidationError("At least one candidate required")
        if len(candidates) > MAX_CANDIDATES:
            raise ValidationError(f"At most {MAX_CANDIDATES} candidates allowed")
        return [self.require_text(c, 'Candidate name', MAX_CANDIDATE_NAME) for c in candidates]

"""Record filters: customer PII masking and a correlation id fallback."""

import logging
import re

EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9_.+-]+@[a-zA-Z0-9-]+\.[a-zA-Z0-9-.]+")
# Ten-digit local numbers, optionally with a +XXX country prefix and separators
PHONE_PATTERN = re.compile(r"(?<![\d+])(?:\+\d{3}[\s.-]?)?\d{2}(?:[\s.-]?\d{2}){4}(?!\d)")


def mask_pii(text: str) -> str:
    if "@" in text:
        text = EMAIL_PATTERN.sub("[EMAIL]", text)
    if any(c.isdigit() for c in text):
        text = PHONE_PATTERN.sub("[PHONE]", text)
    return text


class PIIFilter(logging.Filter):
    """Masks customer e-mails and phone numbers in the message and its string args."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = mask_pii(record.msg)
        if isinstance(record.args, tuple):
            record.args = tuple(mask_pii(a) if isinstance(a, str) else a for a in record.args)
        return True


class DefaultCorrelationFilter(logging.Filter):
    """Falls back to the record's order id, then to a dash."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "correlation_id"):
            record.correlation_id = getattr(record, "order_id", "-")
        return True

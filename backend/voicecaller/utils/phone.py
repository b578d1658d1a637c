"""
Phone number helpers
"""
import re

_STRIP = re.compile(r"[\s\-().]")


def normalize_phone_number(number: str) -> str:
    """
    Normalize a phone number to E.164.

    Ten-digit numbers are assumed to be North American.
    """
    number = _STRIP.sub("", number or "")

    if not number.startswith("+"):
        if len(number) == 10:
            number = "+1" + number
        else:
            number = "+" + number

    return number


def is_valid_phone_number(number: str) -> bool:
    """E.164: '+' followed by 8 to 15 digits, no leading zero"""
    return bool(re.fullmatch(r"\+[1-9]\d{7,14}", normalize_phone_number(number)))

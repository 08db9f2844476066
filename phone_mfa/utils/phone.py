"""
Phone number normalization and validation utilities
"""
import re

import phonenumbers
from phonenumbers import NumberParseException, PhoneNumberFormat
from typing import Optional

# Countries accepted for enrollment and phone login
SUPPORTED_COUNTRIES = frozenset({
    "US", "GB", "CA", "IN", "MX", "BR", "DE", "FR",
    "IT", "ES", "AU", "JP", "CN", "KR", "NG", "ZA",
})


def normalize_phone(phone: str, country_code: Optional[str] = "US") -> str:
    """
    Normalize phone number to E.164 format.

    Args:
        phone: Phone number string (national or +international format)
        country_code: ISO region the number was entered under (default: US)

    Returns:
        Normalized phone number in E.164 format (e.g., +14155551234)

    Raises:
        ValueError: If phone number is invalid or the country is unsupported
    """
    region = (country_code or "US").upper()
    if region not in SUPPORTED_COUNTRIES:
        raise ValueError(f"Unsupported country code: {region}")
    if not phone or not phone.strip():
        raise ValueError("Phone number is required")

    try:
        parsed = phonenumbers.parse(phone.strip(), region)
    except NumberParseException as e:
        raise ValueError(f"Invalid phone number format: {str(e)}")

    # An explicit +prefix has to match the selected country
    if parsed.country_code != phonenumbers.country_code_for_region(region):
        raise ValueError(f"Phone number does not match country {region}")

    if not phonenumbers.is_possible_number(parsed):
        raise ValueError("Invalid phone number")

    # NANP numbers never start with 0 or 1
    if parsed.country_code == 1 and str(parsed.national_number)[:1] in {"0", "1"}:
        raise ValueError("Invalid phone number")

    return phonenumbers.format_number(parsed, PhoneNumberFormat.E164)


def get_phone_last4(phone: str) -> str:
    """
    Get last 4 digits of phone number for safe logging.

    Args:
        phone: Phone number (can be in any format)

    Returns:
        Last 4 digits as string, or all digits if fewer than 4
    """
    digits = ''.join(filter(str.isdigit, phone or ""))

    if len(digits) >= 4:
        return digits[-4:]
    return digits


def mask_phone(phone: str) -> str:
    """
    Mask an E.164 number for display: country dial code, three stars, last 4.

    >>> mask_phone("+15550000000")
    '+1***0000'
    """
    try:
        parsed = phonenumbers.parse(phone, None)
    except NumberParseException:
        return re.sub(r"\d(?=\d{4})", "*", phone or "")
    return f"+{parsed.country_code}***{get_phone_last4(phone)}"

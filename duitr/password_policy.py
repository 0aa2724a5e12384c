from __future__ import annotations

import re
from dataclasses import dataclass, field

MIN_LENGTH = 8
MAX_LENGTH = 128
SPECIAL_CHARACTERS = "@$!%*?&#"
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
COMMON_WEAK_PASSWORDS = (
    "password",
    "password1",
    "12345678",
    "qwerty123",
    "abc123456",
    "password123",
    "admin123",
    "letmein",
    "welcome",
    "monkey123",
)


@dataclass(frozen=True)
class PasswordCriteria:
    has_min_length: bool
    has_uppercase: bool
    has_lowercase: bool
    has_number: bool
    has_special_char: bool
    no_common_patterns: bool


@dataclass(frozen=True)
class PasswordCheck:
    is_valid: bool
    strength: str
    score: int
    errors: list[str] = field(default_factory=list)


def password_criteria(password: str) -> PasswordCriteria:
    lowered = password.lower()
    return PasswordCriteria(
        has_min_length=len(password) >= MIN_LENGTH,
        has_uppercase=bool(re.search(r"[A-Z]", password)),
        has_lowercase=bool(re.search(r"[a-z]", password)),
        has_number=bool(re.search(r"[0-9]", password)),
        has_special_char=any(ch in SPECIAL_CHARACTERS for ch in password),
        no_common_patterns=not any(weak in lowered for weak in COMMON_WEAK_PASSWORDS),
    )


def password_score(criteria: PasswordCriteria, length: int) -> int:
    score = 0.0
    if length >= MIN_LENGTH:
        score += 20
        score += min(length - MIN_LENGTH, 12) * 0.83
    for passed in (
        criteria.has_uppercase,
        criteria.has_lowercase,
        criteria.has_number,
        criteria.has_special_char,
        criteria.no_common_patterns,
    ):
        if passed:
            score += 14
    return min(round(score), 100)


def password_strength(score: int) -> str:
    if score >= 80:
        return "strong"
    if score >= 60:
        return "good"
    if score >= 40:
        return "fair"
    return "weak"


def check_password(password: str) -> PasswordCheck:
    criteria = password_criteria(password)
    errors: list[str] = []
    if not criteria.has_min_length:
        errors.append(f"Password must be at least {MIN_LENGTH} characters long.")
    if len(password) > MAX_LENGTH:
        errors.append(f"Password must not exceed {MAX_LENGTH} characters.")
    if not criteria.has_uppercase:
        errors.append("Password must contain at least one uppercase letter (A-Z).")
    if not criteria.has_lowercase:
        errors.append("Password must contain at least one lowercase letter (a-z).")
    if not criteria.has_number:
        errors.append("Password must contain at least one number (0-9).")
    if not criteria.has_special_char:
        errors.append(f"Password must contain at least one special character ({SPECIAL_CHARACTERS}).")
    if not criteria.no_common_patterns:
        errors.append("Password is too common. Please choose a stronger password.")

    score = password_score(criteria, len(password))
    return PasswordCheck(
        is_valid=not errors,
        strength=password_strength(score),
        score=score,
        errors=errors,
    )


def normalize_email(email: str) -> str:
    normalized = email.strip().lower()
    if not normalized:
        raise ValueError("Email is required.")
    if not EMAIL_PATTERN.match(normalized):
        raise ValueError("Please enter a valid email address.")
    return normalized

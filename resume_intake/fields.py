"""Heuristic field extraction from unstructured resume text.

Each field is resolved by an ordered chain of :class:`FieldRule` entries.
Rules are pure functions of the document; the first rule that returns a
non-empty string wins and later rules are not consulted.  Extraction
never raises: a field no rule can resolve stays an empty string.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import NamedTuple

import structlog

from .models import AttachmentExtract

logger = structlog.get_logger()


@dataclass(frozen=True)
class ResumeText:
    """Extracted document text plus its stripped, non-empty lines."""

    text: str
    lines: list[str] = field(default_factory=list)

    @classmethod
    def from_text(cls, text: str) -> ResumeText:
        lines = [line.strip() for line in re.split(r"\r?\n", text)]
        return cls(text=text, lines=[line for line in lines if line])


class FieldRule(NamedTuple):
    label: str
    extract: Callable[[ResumeText], str]


def run_chain(rules: Sequence[FieldRule], doc: ResumeText) -> tuple[str, str | None]:
    """Return ``(value, rule_label)`` for the first rule that matches."""
    for rule in rules:
        value = rule.extract(doc)
        if value:
            return value, rule.label
    return "", None


# ----------------------------------------------------------------------
# Name
# ----------------------------------------------------------------------

_NAME_LABEL_PATTERNS = [
    re.compile(r"(?:^|\n)\s*name\s*:\s*([^\n\r]+)", re.IGNORECASE),
    re.compile(r"(?:^|\n)\s*full\s*name\s*:\s*([^\n\r]+)", re.IGNORECASE),
    re.compile(r"name\s*:\s*([A-Za-z\s]+)", re.IGNORECASE),
    re.compile(r"full\s*name\s*:\s*([A-Za-z\s]+)", re.IGNORECASE),
]
_FIRST_LAST_RE = re.compile(r"^([A-Z][a-z]+\s+[A-Z][a-z]+(?:\s+[A-Z][a-z]+)?)", re.MULTILINE)
_VOWELS = frozenset("AEIOU")
_MIN_NAME_PART = 3


def _name_from_label(doc: ResumeText) -> str:
    for pattern in _NAME_LABEL_PATTERNS:
        match = pattern.search(doc.text)
        if match and match.group(1).strip():
            return match.group(1).strip()
    return ""


def split_concatenated_name(token: str) -> str:
    """Split an all-caps token such as ``JANESMITH`` into two words.

    Both halves must be at least three letters.  Split points are tried
    from the middle outwards; the first one where the left half ends in
    a vowel and the right half starts with a consonant wins, otherwise
    the token is cut at the middle.  Tokens too short for a 3+/3+ split
    are returned unchanged.
    """
    n = len(token)
    if n < 2 * _MIN_NAME_PART:
        return token
    middle = n // 2
    candidates = sorted(
        range(_MIN_NAME_PART, n - _MIN_NAME_PART + 1),
        key=lambda i: (abs(i - middle), i),
    )
    for i in candidates:
        if token[i - 1] in _VOWELS and token[i] not in _VOWELS:
            return f"{token[:i]} {token[i:]}"
    return f"{token[:middle]} {token[middle:]}"


def _name_from_caps_first_line(doc: ResumeText) -> str:
    if not doc.lines:
        return ""
    first = doc.lines[0]
    if not re.fullmatch(r"[A-Z]+", re.sub(r"\s", "", first)):
        return ""
    if not 5 < len(first) < 30:
        return ""
    if re.fullmatch(r"[A-Z]+", first):
        return split_concatenated_name(first)
    return first


def _name_from_caps_line(doc: ResumeText) -> str:
    for line in doc.lines[:5]:
        if not 5 < len(line) < 50:
            continue
        words = line.split()
        if 2 <= len(words) <= 4 and re.fullmatch(r"[A-Z\s]+", line):
            return line
    return ""


def _name_from_capitalised_line(doc: ResumeText) -> str:
    for line in doc.lines[:10]:
        words = line.split()
        if not 2 <= len(words) <= 4:
            continue
        if all(re.fullmatch(r"[A-Z][A-Za-z]*", word) for word in words) and re.fullmatch(
            r"[A-Za-z\s]+", line
        ):
            return line
    return ""


def _name_from_first_last(doc: ResumeText) -> str:
    match = _FIRST_LAST_RE.search(doc.text)
    return match.group(1).strip() if match else ""


NAME_RULES: list[FieldRule] = [
    FieldRule("label", _name_from_label),
    FieldRule("caps_first_line", _name_from_caps_first_line),
    FieldRule("caps_line", _name_from_caps_line),
    FieldRule("capitalised_line", _name_from_capitalised_line),
    FieldRule("first_last", _name_from_first_last),
]


# ----------------------------------------------------------------------
# Email
# ----------------------------------------------------------------------

EMAIL_RE = re.compile(
    r"\b[a-zA-Z0-9](?:[a-zA-Z0-9._-]*[a-zA-Z0-9])?"
    r"@[a-zA-Z0-9](?:[a-zA-Z0-9.-]*[a-zA-Z0-9])?\.[a-zA-Z]{2,}\b"
)
_EMAIL_LABEL_RE = re.compile(
    r"(?:email|e-mail|mail)\s*[:=]\s*([a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,})",
    re.IGNORECASE,
)
PLACEHOLDER_DOMAINS = frozenset({"example.com", "email.com", "test.com", "domain.com"})


def is_placeholder_domain(address: str) -> bool:
    domain = address.rpartition("@")[2].lower()
    return any(domain == d or domain.endswith("." + d) for d in PLACEHOLDER_DOMAINS)


def _email_anywhere(doc: ResumeText) -> str:
    for match in EMAIL_RE.finditer(doc.text):
        if not is_placeholder_domain(match.group(0)):
            return match.group(0)
    return ""


def _email_from_label(doc: ResumeText) -> str:
    for match in _EMAIL_LABEL_RE.finditer(doc.text):
        inner = EMAIL_RE.search(match.group(1))
        if inner:
            return inner.group(0)
    return ""


EMAIL_RULES: list[FieldRule] = [
    FieldRule("anywhere", _email_anywhere),
    FieldRule("label", _email_from_label),
]


# ----------------------------------------------------------------------
# Phone
# ----------------------------------------------------------------------

_PHONE_LABEL_PATTERNS = [
    re.compile(
        r"(?:phone|mobile|contact|tel|telephone|cell|mob|whatsapp)\s*[:=]?\s*([+\d \t\-().]+)",
        re.IGNORECASE,
    ),
    re.compile(r"(?:ph|mob|tel)\s*[:=]?\s*([+\d \t\-().]+)", re.IGNORECASE),
]
_PHONE_PATTERNS = [
    # international: +1-234-567-8900, +44 20 7946 0958
    re.compile(r"\+?\d{1,4}[-. \t]?\(?\d{1,4}\)?[-. \t]?\d{1,4}[-. \t]?\d{1,4}[-. \t]?\d{1,9}"),
    # US: (123) 456-7890
    re.compile(r"\(?\d{3}\)?[-. \t]?\d{3}[-. \t]?\d{4}"),
    # India: +91 98765 43210
    re.compile(r"\+?91[-. \t]?\d{5}[-. \t]?\d{5}"),
    re.compile(r"\b\d{10,15}\b"),
    re.compile(r"\d{3,4}[ \t]+\d{3,4}[ \t]+\d{3,4}"),
]
_YEAR_RE = re.compile(r"(?:19|20)\d\d")
PHONE_MIN_DIGITS = 10
PHONE_MAX_DIGITS = 15
_ADJACENCY_WINDOW = 5


def normalize_phone(candidate: str) -> str:
    return re.sub(r"\D", "", candidate)


def _phone_candidate(text: str, start: int, end: int) -> str:
    """Return the normalised digits for ``text[start:end]`` or ``""`` if rejected."""
    digits = normalize_phone(text[start:end])
    if _YEAR_RE.fullmatch(digits):
        return ""
    if not PHONE_MIN_DIGITS <= len(digits) <= PHONE_MAX_DIGITS:
        return ""
    before = text[max(0, start - _ADJACENCY_WINDOW):start]
    after = text[end:end + _ADJACENCY_WINDOW]
    if "@" in before or "@" in after:
        return ""
    if "." in before and "." in after:
        return ""
    return digits


def _phone_from_label(doc: ResumeText) -> str:
    for pattern in _PHONE_LABEL_PATTERNS:
        for match in pattern.finditer(doc.text):
            digits = _phone_candidate(doc.text, match.start(1), match.end(1))
            if digits:
                return digits
    return ""


def _phone_unlabelled(doc: ResumeText) -> str:
    for pattern in _PHONE_PATTERNS:
        for match in pattern.finditer(doc.text):
            digits = _phone_candidate(doc.text, match.start(), match.end())
            if digits:
                return digits
    return ""


PHONE_RULES: list[FieldRule] = [
    FieldRule("label", _phone_from_label),
    FieldRule("unlabelled", _phone_unlabelled),
]


# ----------------------------------------------------------------------
# Date of birth
# ----------------------------------------------------------------------

_DOB_LABEL = r"(?:date\s*of\s*birth|dob|d\.o\.b\.|birth\s*date|born)\s*:?\s*"
_DOB_PATTERNS = [
    re.compile(_DOB_LABEL + r"([0-9]{1,2}[/\-.][0-9]{1,2}[/\-.][0-9]{2,4})", re.IGNORECASE),
    re.compile(_DOB_LABEL + r"([A-Za-z]+\s+\d{1,2},?\s+\d{4})", re.IGNORECASE),
    re.compile(_DOB_LABEL + r"(\d{1,2}\s+[A-Za-z]+,?\s+\d{4})", re.IGNORECASE),
    re.compile(r"(?:born|birth)\s*:?\s*([0-9]{1,2}[/\-.][0-9]{1,2}[/\-.][0-9]{2,4})", re.IGNORECASE),
]
# day/month/year with a year between 1940 and 2005
_BIRTH_DATE_RE = re.compile(
    r"\b(?:0?[1-9]|[12][0-9]|3[01])[/\-.](?:0?[1-9]|1[0-2])[/\-.](?:19[4-9]\d|200[0-5])\b"
)


def _dob_from_label(doc: ResumeText) -> str:
    for pattern in _DOB_PATTERNS:
        match = pattern.search(doc.text)
        if match and match.group(1).strip():
            return match.group(1).strip()
    return ""


def _dob_plausible_date(doc: ResumeText) -> str:
    match = _BIRTH_DATE_RE.search(doc.text)
    return match.group(0) if match else ""


DOB_RULES: list[FieldRule] = [
    FieldRule("label", _dob_from_label),
    FieldRule("plausible_date", _dob_plausible_date),
]


# ----------------------------------------------------------------------
# Experience
# ----------------------------------------------------------------------

_YEARS_UNIT = r"(?:years?|yrs?|yr)"
_EXPERIENCE_PATTERNS = [
    re.compile(
        r"(?:experience|exp|total\s*experience|years?\s*of\s*experience|work\s*experience)"
        r"\s*:?\s*([0-9]+(?:\.[0-9]+)?)\s*" + _YEARS_UNIT,
        re.IGNORECASE,
    ),
    re.compile(
        r"([0-9]+(?:\.[0-9]+)?)\s*" + _YEARS_UNIT + r"\s*(?:of\s*)?(?:experience|exp)",
        re.IGNORECASE,
    ),
]


def _experience_from_patterns(doc: ResumeText) -> str:
    for pattern in _EXPERIENCE_PATTERNS:
        match = pattern.search(doc.text)
        if match:
            return f"{match.group(1)} years"
    return ""


EXPERIENCE_RULES: list[FieldRule] = [
    FieldRule("pattern", _experience_from_patterns),
]


# ----------------------------------------------------------------------
# Role
# ----------------------------------------------------------------------

_ROLE_LABEL_RE = re.compile(
    r"(?:current\s*role|position|job\s*title|designation|role|title)\s*:?[ \t]*"
    r"([A-Za-z &]*(?:engineer|developer|scientist|analyst|manager|architect"
    r"|specialist|consultant|lead|senior|junior|associate))",
    re.IGNORECASE,
)
COMMON_ROLES = [
    "Software Engineer",
    "Software Developer",
    "Full Stack Developer",
    "Frontend Developer",
    "Backend Developer",
    "Data Scientist",
    "Data Analyst",
    "ML Engineer",
    "AI Engineer",
    "DevOps Engineer",
    "Mobile Developer",
    "Web Developer",
    "System Architect",
    "Product Manager",
    "Project Manager",
    "Tech Lead",
    "Senior Engineer",
    "Junior Engineer",
    "Associate Engineer",
]
_ROLE_LOOKUP_WINDOW = 2000
_ROLE_LINE_KEYWORDS = ("engineer", "developer", "scientist", "analyst", "architect", "manager")
_ROLE_STOP_KEYWORDS = ("engineer", "developer", "scientist", "analyst")


def _title_case(phrase: str) -> str:
    return " ".join(word[:1].upper() + word[1:].lower() for word in phrase.split(" "))


def _role_from_label(doc: ResumeText) -> str:
    match = _ROLE_LABEL_RE.search(doc.text)
    if not match:
        return ""
    role = match.group(1).strip()
    if 3 < len(role) < 50:
        return _title_case(role)
    return ""


def _role_from_table(doc: ResumeText) -> str:
    head = doc.text[:_ROLE_LOOKUP_WINDOW].lower()
    for role in COMMON_ROLES:
        if role.lower() in head:
            return role
    return ""


def _role_from_keyword_line(doc: ResumeText) -> str:
    for line in doc.lines[:15]:
        lowered = line.lower()
        if not any(keyword in lowered for keyword in _ROLE_LINE_KEYWORDS):
            continue
        words: list[str] = []
        for word in line.split():
            if len(word) > 2 and word.isascii() and word.isalpha():
                words.append(word)
                if any(stop in word.lower() for stop in _ROLE_STOP_KEYWORDS):
                    break
        if 0 < len(words) < 5:
            return " ".join(words)
    return ""


ROLE_RULES: list[FieldRule] = [
    FieldRule("label", _role_from_label),
    FieldRule("common_role", _role_from_table),
    FieldRule("keyword_line", _role_from_keyword_line),
]


# ----------------------------------------------------------------------
# Entry point
# ----------------------------------------------------------------------

_CHAINS: dict[str, list[FieldRule]] = {
    "name": NAME_RULES,
    "email": EMAIL_RULES,
    "contact_number": PHONE_RULES,
    "date_of_birth": DOB_RULES,
    "experience": EXPERIENCE_RULES,
    "role": ROLE_RULES,
}


def extract_fields(text: str) -> AttachmentExtract:
    """Parse candidate fields out of *text*.

    Total and deterministic: empty or unrecognised text yields an
    :class:`AttachmentExtract` whose fields are all empty strings.
    """
    if not text:
        logger.debug("resume_text_empty")
        return AttachmentExtract()

    doc = ResumeText.from_text(text)
    values: dict[str, str] = {}
    for field_name, rules in _CHAINS.items():
        value, rule = run_chain(rules, doc)
        if value:
            logger.debug("resume_field_found", field=field_name, rule=rule)
        else:
            logger.debug("resume_field_not_found", field=field_name)
        values[field_name] = value
    return AttachmentExtract(**values)

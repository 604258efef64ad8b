"""Rule tables for reading intent and identity fields out of free-text utterances.

Everything here is plain pattern matching. Negation wins over confirmation:
"ok, cancel" is not a confirmation.
"""

from __future__ import annotations

import re
from typing import Dict, Iterable, Optional

NEGATION_PATTERN = re.compile(r"\b(no|not|dont|don't|decline|cancel|stop)\b")
CONFIRMATION_PATTERN = re.compile(
    r"\b(yes|yep|yeah|confirm|confirmed|proceed|ok|okay|sure|continue|go ahead|please do|do it)\b"
)

BOARDING_PASS_PATTERN = re.compile(r"\bboarding[\s-]*pass(?:es)?\b", re.IGNORECASE)

# a label must end on a word boundary ("booking ref" never matches inside "booking reference"),
# and an "is" filler between label and value is skipped
LABELLED_PNR_PATTERN = re.compile(
    r"\b(?:pnr|booking\s*reference|booking\s*ref|record\s*locator)(?![a-z])"
    r"(?:\s+(?:number|code)\b)?(?:\s+is\b)?\s*[:=#]?\s*(?!(?:is|number)\b)([A-Za-z0-9]{5,8})\b",
    re.IGNORECASE,
)
# bare six-character locator, upper case, mixing letters and digits (e.g. 7MHQTY)
BARE_PNR_PATTERN = re.compile(r"\b(?=[A-Z0-9]*\d)(?=[A-Z0-9]*[A-Z])[A-Z0-9]{6}\b")
# an all-letter locator (e.g. QWERTY) only counts when it is the whole reply
LONE_PNR_PATTERN = re.compile(r"^\s*([A-Z]{6})\s*[.!]?\s*$")
LOCATOR_TOKEN_PATTERN = re.compile(r"\b[A-Za-z0-9]{5,8}\b")

NAME_FILLER = r"(?![a-z])(?:\s+is\b)?\s*[:=]?\s*(?!is\b)"
LAST_NAME_PATTERN = re.compile(
    r"\b(?:last\s*name|surname|family\s*name)" + NAME_FILLER + r"([A-Za-z][A-Za-z'\-]*)", re.IGNORECASE
)
FIRST_NAME_PATTERN = re.compile(r"\b(?:first\s*name|given\s*name)" + NAME_FILLER + r"([A-Za-z][A-Za-z'\-]*)", re.IGNORECASE)
FREQUENT_FLYER_PATTERN = re.compile(
    r"\b(?:frequent\s*flyer(?:\s*card)?(?:\s*number)?|ffp(?:\s*number)?|ff\s*number|guest\s*number)(?![a-z])"
    r"(?:\s+is\b)?\s*[:=#]?\s*(?!(?:is|number|card)\b)([A-Za-z0-9]{4,})",
    re.IGNORECASE,
)

NATIONALITY_WORD_PATTERN = re.compile(r"\bnationality\s+([A-Za-z]+)\b", re.IGNORECASE)
NATIONALITY_CODE_PRESENT = re.compile(r"\bnationalityCountryCode\b", re.IGNORECASE)

NATIONALITY_CODE_MAP: Dict[str, str] = {
    "american": "US",
    "australian": "AU",
    "bahraini": "BH",
    "bangladeshi": "BD",
    "british": "GB",
    "canadian": "CA",
    "chinese": "CN",
    "egyptian": "EG",
    "emirati": "AE",
    "filipino": "PH",
    "french": "FR",
    "german": "DE",
    "indian": "IN",
    "indonesian": "ID",
    "irish": "IE",
    "italian": "IT",
    "japanese": "JP",
    "jordanian": "JO",
    "kuwaiti": "KW",
    "lebanese": "LB",
    "nepali": "NP",
    "omani": "OM",
    "pakistani": "PK",
    "qatari": "QA",
    "russian": "RU",
    "saudi": "SA",
    "singaporean": "SG",
    "spanish": "ES",
    "srilankan": "LK",
    "swiss": "CH",
}


def is_user_confirming(text: str | None) -> bool:
    normalized = (text or "").strip().lower()
    if not normalized:
        return False
    if NEGATION_PATTERN.search(normalized):
        return False
    return CONFIRMATION_PATTERN.search(normalized) is not None


def mentions_boarding_pass(text: str | None) -> bool:
    return bool(text) and BOARDING_PASS_PATTERN.search(text or "") is not None


def extract_booking_reference(text: str | None, known: Iterable[str | None] = ()) -> Optional[str]:
    """Read a booking reference out of ``text``.

    A labelled value ("PNR ABC123", "my booking reference is QWERTY") wins. After that comes
    any token matching one of the ``known`` references, then a bare mixed locator, then a
    reply that is nothing but an all-letter locator.
    """
    if not text:
        return None
    match = LABELLED_PNR_PATTERN.search(text)
    if match:
        return match.group(1).upper()
    references = {ref.upper() for ref in known if ref}
    for token in LOCATOR_TOKEN_PATTERN.findall(text):
        if token.upper() in references:
            return token.upper()
    match = BARE_PNR_PATTERN.search(text)
    if match:
        return match.group(0)
    match = LONE_PNR_PATTERN.match(text)
    return match.group(1) if match else None


def extract_last_name(text: str | None) -> Optional[str]:
    match = LAST_NAME_PATTERN.search(text or "")
    return match.group(1) if match else None


def extract_first_name(text: str | None) -> Optional[str]:
    match = FIRST_NAME_PATTERN.search(text or "")
    return match.group(1) if match else None


def extract_frequent_flyer_number(text: str | None) -> Optional[str]:
    match = FREQUENT_FLYER_PATTERN.search(text or "")
    return match.group(1) if match else None


def extract_identity_fields(text: str | None) -> Dict[str, str]:
    fields = {
        "frequentFlyerNumber": extract_frequent_flyer_number(text),
        "bookingReference": extract_booking_reference(text),
        "lastName": extract_last_name(text),
        "firstName": extract_first_name(text),
    }
    return {key: value for key, value in fields.items() if value}


def normalize_nationality_goal(goal: str) -> str:
    """Append ``nationalityCountryCode XX`` when the goal names a nationality word we know."""
    text = goal.strip()
    if not text or NATIONALITY_CODE_PRESENT.search(text):
        return goal
    match = NATIONALITY_WORD_PATTERN.search(text)
    if not match:
        return goal
    code = NATIONALITY_CODE_MAP.get(re.sub(r"[^a-z]", "", match.group(1).lower()))
    if not code:
        return goal
    return f"{goal} nationalityCountryCode {code}"

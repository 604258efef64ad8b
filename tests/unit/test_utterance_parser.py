from __future__ import annotations

from agents.utterance_parser import (
    extract_booking_reference,
    extract_identity_fields,
    extract_last_name,
    is_user_confirming,
    mentions_boarding_pass,
    normalize_nationality_goal,
)


def test_confirmation_heuristic():
    assert is_user_confirming("no thanks") is False
    assert is_user_confirming("yes please") is True
    assert is_user_confirming("not sure") is False
    assert is_user_confirming("ok, cancel") is False
    assert is_user_confirming("") is False
    assert is_user_confirming(None) is False
    assert is_user_confirming("  Go ahead ") is True
    assert is_user_confirming("what time is boarding") is False


def test_negation_wins_over_confirmation():
    assert is_user_confirming("yes, but don't proceed") is False
    assert is_user_confirming("sure, stop here") is False


def test_booking_reference_extraction():
    assert extract_booking_reference("PNR 7MHQTY lastName Smith") == "7MHQTY"
    assert extract_booking_reference("booking reference: ab12cd") == "AB12CD"
    assert extract_booking_reference("my code is 7MHQTY") == "7MHQTY"
    assert extract_booking_reference("lastName Smith") is None
    assert extract_booking_reference("please use 8KLPQR") == "8KLPQR"
    # all-letter words inside a sentence are not locators
    assert extract_booking_reference("PLEASE HELP") is None


def test_booking_reference_after_filler_words():
    assert extract_booking_reference("my booking reference is 7MHQTY") == "7MHQTY"
    assert extract_booking_reference("my PNR is 8KLPQR") == "8KLPQR"
    assert extract_booking_reference("booking ref is 8KLPQR") == "8KLPQR"
    assert extract_booking_reference("bookingReference: 7MHQTY") == "7MHQTY"
    fields = extract_identity_fields("My booking reference is 7MHQTY and my last name is Smith")
    assert fields == {"bookingReference": "7MHQTY", "lastName": "Smith"}


def test_all_letter_booking_reference():
    assert extract_booking_reference("my PNR is ABCDEF") == "ABCDEF"
    assert extract_booking_reference("QWERTY") == "QWERTY"
    assert extract_booking_reference("the qwerty one please", known=["7MHQTY", "QWERTY"]) == "QWERTY"
    assert extract_booking_reference("the qwerty one please") is None


def test_names_after_filler_words():
    assert extract_last_name("my last name is Smith") == "Smith"
    assert extract_last_name("surname: Isaacs") == "Isaacs"
    assert extract_identity_fields("first name is John, last name is Smith") == {"firstName": "John", "lastName": "Smith"}
    assert extract_identity_fields("my frequent flyer number is EY1234567") == {"frequentFlyerNumber": "EY1234567"}


def test_identity_fields_from_goal():
    fields = extract_identity_fields("frequentFlyerCardNumber AB123 lastName Smith firstName John")
    assert fields == {"frequentFlyerNumber": "AB123", "lastName": "Smith", "firstName": "John"}
    assert extract_identity_fields("hello") == {}


def test_boarding_pass_mentions():
    assert mentions_boarding_pass("Can I get my boarding pass?") is True
    assert mentions_boarding_pass("boarding-passes please") is True
    assert mentions_boarding_pass("check me in") is False


def test_nationality_goal_normalization():
    assert normalize_nationality_goal("my nationality indian") == "my nationality indian nationalityCountryCode IN"
    assert normalize_nationality_goal("nationality Emirati") == "nationality Emirati nationalityCountryCode AE"
    assert normalize_nationality_goal("nationalityCountryCode AE") == "nationalityCountryCode AE"
    assert normalize_nationality_goal("nationality martian") == "nationality martian"
    assert normalize_nationality_goal("yes") == "yes"

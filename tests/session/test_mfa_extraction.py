from datetime import datetime, timedelta, timezone
from email.message import EmailMessage

from exchange_rpa.session.mfa.extraction import (
    MailMessage,
    extract_code,
    filter_by_sender,
    filter_by_time,
    html_to_text,
    select_code,
)
from exchange_rpa.session.mfa.imap import _subject_criteria, imap_host_for, parse_message

CHALLENGE_AT = datetime(2024, 1, 8, 9, 30, tzinfo=timezone.utc)


def _message(body: str, *, sender: str = "noreply@hhaexchange.com", offset_s: int = 30, subject: str = "") -> MailMessage:
    return MailMessage(
        sender=sender,
        subject=subject,
        body=body,
        received_at=CHALLENGE_AT + timedelta(seconds=offset_s),
    )


def test_extracts_code_from_verification_phrase() -> None:
    assert extract_code("Your verification code is: 482913") == "482913"


def test_returns_none_without_six_digit_run() -> None:
    assert extract_code("Your code expires in 10 minutes. Ref 12345.") is None


def test_specific_phrase_wins_over_earlier_bare_digits() -> None:
    body = "Ticket 111111 opened. Your verification code is 654321."
    assert extract_code(body) == "654321"


def test_extracts_code_from_html_body() -> None:
    body = "<html><style>p{}</style><p>Security code: <b>735102</b></p></html>"
    assert html_to_text(body) == "Security code: 735102"
    assert extract_code(body) == "735102"


def test_messages_before_challenge_are_excluded() -> None:
    stale = _message("Your verification code is: 111111", offset_s=-5)
    fresh = _message("Your verification code is: 222222", offset_s=5)

    assert filter_by_time([stale, fresh], CHALLENGE_AT) == [fresh]
    assert select_code([stale], CHALLENGE_AT) is None


def test_naive_timestamps_are_treated_as_utc() -> None:
    naive = MailMessage("noreply@hhaexchange.com", "", "code: 333333", datetime(2024, 1, 8, 9, 31))

    assert select_code([naive], CHALLENGE_AT) == "333333"


def test_sender_filter_is_case_insensitive() -> None:
    messages = [_message("x", sender="NoReply@HHAeXchange.com"), _message("y", sender="friend@example.com")]

    assert [message.body for message in filter_by_sender(messages)] == ["x"]


def test_newest_qualifying_message_wins() -> None:
    older = _message("Your verification code is: 100000", offset_s=10)
    newer = _message("Your verification code is: 200000", offset_s=40)
    spam = _message("Your verification code is: 999999", sender="spam@example.com", offset_s=50)

    assert select_code([older, spam, newer], CHALLENGE_AT) == "200000"


def test_code_in_subject_is_found() -> None:
    message = _message("See subject.", subject="Your code is 456789")

    assert select_code([message], CHALLENGE_AT) == "456789"


def test_parse_message_reads_headers_and_plain_body() -> None:
    email = EmailMessage()
    email["From"] = "HHAeXchange <noreply@hhaexchange.com>"
    email["Subject"] = "Authentication Code"
    email["Date"] = "Mon, 08 Jan 2024 09:31:00 +0000"
    email.set_content("Your verification code is: 482913")

    parsed = parse_message(email.as_bytes())

    assert "noreply@hhaexchange.com" in parsed.sender
    assert parsed.subject == "Authentication Code"
    assert parsed.received_at == datetime(2024, 1, 8, 9, 31, tzinfo=timezone.utc)
    assert extract_code(parsed.body) == "482913"


def test_imap_host_lookup_and_subject_search() -> None:
    assert imap_host_for("ops@outlook.com") == "outlook.office365.com"
    assert imap_host_for("ops@agency.org") == "imap.agency.org"
    assert _subject_criteria(["a", "b", "c"]) == 'OR SUBJECT "a" OR SUBJECT "b" SUBJECT "c"'

"""入库边界的记录变体校验与 AT-URI 解析。"""

import pytest

from conftest import submission_record
from src.core.errors import ValidationError
from src.sync.records import (
    ENDORSEMENT_NSID,
    REVIEW_COMMENT_NSID,
    SUBMISSION_NSID,
    EprintSubmission,
    ReviewComment,
    ReviewEndorsement,
    parse_at_uri,
    parse_record,
    parse_record_uri,
)

SUBJECT = {"uri": "at://did:plc:author1/pub.chive.eprint.submission/1", "cid": "bafy-1"}


def test_parse_at_uri():
    at = parse_at_uri("at://did:plc:abc/pub.chive.eprint.submission/3kxyz")
    assert (at.authority, at.collection, at.rkey) == ("did:plc:abc", SUBMISSION_NSID, "3kxyz")
    assert str(at) == "at://did:plc:abc/pub.chive.eprint.submission/3kxyz"

    for bad in ("https://x/y/z", "at://did:plc:abc", "at://did:plc:abc//rkey", "at://a/b/c/d", None):
        with pytest.raises(ValidationError):
            parse_at_uri(bad)


def test_parse_record_uri_accepts_any_scheme():
    at = parse_record_uri("https://example.com/col/rk")
    assert (at.scheme, at.authority, at.collection, at.rkey) == ("https", "example.com", "col", "rk")
    assert str(at) == "https://example.com/col/rk"

    for bad in ("not-a-uri", "://a/b/c", "at://only-authority", "https://a/b/c/d", 42):
        with pytest.raises(ValidationError):
            parse_record_uri(bad)


def test_submission_variant():
    rec = parse_record(SUBMISSION_NSID, submission_record("Tidal flats"))
    assert isinstance(rec, EprintSubmission)
    assert rec.display_title == "Tidal flats"
    assert rec.submitted_by == "did:plc:author1"
    assert rec.license_slug == "CC-BY-4.0"


def test_review_variants():
    comment = parse_record(REVIEW_COMMENT_NSID, {
        "$type": REVIEW_COMMENT_NSID, "subject": SUBJECT, "text": "Nice.", "createdAt": "2026-01-02T00:00:00Z",
    })
    assert isinstance(comment, ReviewComment)
    assert comment.display_title == ""

    endorsement = parse_record(ENDORSEMENT_NSID, {
        "subject": SUBJECT, "endorsementType": "methods", "createdAt": "2026-01-02T00:00:00Z",
    })
    assert isinstance(endorsement, ReviewEndorsement)
    assert endorsement.endorsement_type == "methods"


@pytest.mark.parametrize("collection,payload", [
    (SUBMISSION_NSID, {**submission_record(), "authors": []}),
    (SUBMISSION_NSID, {k: v for k, v in submission_record().items() if k != "createdAt"}),
    (SUBMISSION_NSID, {**submission_record(), "$type": REVIEW_COMMENT_NSID}),
    (ENDORSEMENT_NSID, {"subject": SUBJECT, "endorsementType": "vibes", "createdAt": "x"}),
    (REVIEW_COMMENT_NSID, {"subject": {"uri": "at://x/y/z"}, "text": "t", "createdAt": "x"}),
    ("app.bsky.feed.post", {"text": "hi", "createdAt": "x"}),
    (SUBMISSION_NSID, ["not", "an", "object"]),
])
def test_rejects_unrecognized_shapes(collection, payload):
    with pytest.raises(ValidationError):
        parse_record(collection, payload)


def test_validation_error_names_field():
    with pytest.raises(ValidationError) as exc:
        parse_record(SUBMISSION_NSID, {**submission_record(), "title": ""})
    assert exc.value.field == "title"

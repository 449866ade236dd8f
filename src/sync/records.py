"""
Ingestion-boundary record variants.

Records arrive from repositories as loose JSON. Each supported collection NSID
maps to one pydantic model; anything else (unknown collection, missing
required fields, wrong ``$type``) is rejected with ``ValidationError`` before
it reaches the Primary Store.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional, Type, Union

import pydantic
from pydantic import BaseModel, ConfigDict, Field, model_validator

from src.core.errors import ValidationError

SUBMISSION_NSID = "pub.chive.eprint.submission"
REVIEW_COMMENT_NSID = "pub.chive.review.comment"
ENDORSEMENT_NSID = "pub.chive.review.endorsement"


# ============================================================
# AT-URI
# ============================================================

@dataclass(frozen=True)
class AtUri:
    authority: str  # DID
    collection: str
    rkey: str
    scheme: str = "at"

    def __str__(self) -> str:
        return f"{self.scheme}://{self.authority}/{self.collection}/{self.rkey}"


def parse_record_uri(uri: str) -> AtUri:
    """scheme://authority/collection/rkey，scheme 不限；本地查询只把 uri 当作不透明的键。"""
    if not isinstance(uri, str) or "://" not in uri:
        raise ValidationError(f"not a record URI: {uri!r}", field="uri")
    scheme, rest = uri.split("://", 1)
    parts = rest.split("/")
    if not scheme or len(parts) != 3 or not all(parts):
        raise ValidationError(f"record URI must be scheme://authority/collection/rkey: {uri!r}", field="uri")
    return AtUri(authority=parts[0], collection=parts[1], rkey=parts[2], scheme=scheme)


def parse_at_uri(uri: str) -> AtUri:
    """at://did:plc:xxx/collection/rkey → AtUri；格式不对直接 ValidationError。"""
    if not isinstance(uri, str) or not uri.startswith("at://"):
        raise ValidationError(f"not an AT-URI: {uri!r}", field="uri")
    return parse_record_uri(uri)


# ============================================================
# Variants
# ============================================================

class _RecordBase(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    type_: Optional[str] = Field(default=None, alias="$type")
    created_at: str = Field(alias="createdAt", min_length=1)

    nsid: Any = None  # overridden per variant

    @model_validator(mode="after")
    def _check_type_tag(self):
        if self.type_ is not None and self.type_ != self.nsid:
            raise ValueError(f"$type {self.type_!r} does not match collection {self.nsid!r}")
        return self

    @property
    def display_title(self) -> str:
        return ""


class _StrongRef(BaseModel):
    uri: str
    cid: str


class _Author(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str = ""
    did: Optional[str] = None


class EprintSubmission(_RecordBase):
    nsid: Literal["pub.chive.eprint.submission"] = SUBMISSION_NSID

    title: str = Field(min_length=1)
    authors: List[_Author] = Field(min_length=1)
    submitted_by: str = Field(alias="submittedBy")
    abstract_plain_text: Optional[str] = Field(default=None, alias="abstractPlainText")
    keywords: List[str] = Field(default_factory=list)
    license_slug: Optional[str] = Field(default=None, alias="licenseSlug")
    version: Optional[int] = None
    previous_version: Optional[str] = Field(default=None, alias="previousVersion")

    @property
    def display_title(self) -> str:
        return self.title


class ReviewComment(_RecordBase):
    nsid: Literal["pub.chive.review.comment"] = REVIEW_COMMENT_NSID

    subject: _StrongRef
    text: str = Field(min_length=1)
    review_type: Optional[str] = Field(default=None, alias="reviewType")
    parent: Optional[str] = None


class ReviewEndorsement(_RecordBase):
    nsid: Literal["pub.chive.review.endorsement"] = ENDORSEMENT_NSID

    subject: _StrongRef
    endorsement_type: Literal["methods", "results", "overall"] = Field(alias="endorsementType")
    comment: Optional[str] = None


IndexableRecord = Union[EprintSubmission, ReviewComment, ReviewEndorsement]

RECORD_VARIANTS: Dict[str, Type[_RecordBase]] = {
    SUBMISSION_NSID: EprintSubmission,
    REVIEW_COMMENT_NSID: ReviewComment,
    ENDORSEMENT_NSID: ReviewEndorsement,
}

RECORD_KINDS: Dict[str, str] = {
    SUBMISSION_NSID: "eprint",
    REVIEW_COMMENT_NSID: "review",
    ENDORSEMENT_NSID: "endorsement",
}


def parse_record(collection: str, payload: Any) -> IndexableRecord:
    """按 collection 选择变体并校验；未识别的形状一律拒绝。"""
    model = RECORD_VARIANTS.get(collection)
    if model is None:
        raise ValidationError(f"unsupported collection: {collection}", field="collection")
    if not isinstance(payload, dict):
        raise ValidationError(f"record must be an object, got {type(payload).__name__}", field="record")
    data = dict(payload)
    data.pop("nsid", None)
    try:
        return model.model_validate(data)  # type: ignore[return-value]
    except pydantic.ValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        loc = ".".join(str(p) for p in first.get("loc", ())) or "record"
        raise ValidationError(f"invalid {collection} record: {first.get('msg', e)}", field=loc) from e

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from app.models import ArchiveRequest, MetadataLanguage
from app.utils import is_valid_email, is_valid_url


class CreateAccessionRequest(BaseModel):
    url: str
    metadata_language: MetadataLanguage
    metadata_title: str = Field(min_length=1, max_length=200)
    metadata_description: str | None = Field(default=None, min_length=1, max_length=2000)
    metadata_time: datetime
    metadata_subjects: list[int] = Field(min_length=1, max_length=200)
    browser_profile: Literal["facebook"] | None = None
    is_private: bool = False
    requester_email: str

    @field_validator("metadata_title", "metadata_description", mode="before")
    @classmethod
    def _strip_text(cls, value):
        # length limits apply to the trimmed text
        return value.strip() if isinstance(value, str) else value

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        if not is_valid_url(value):
            raise ValueError("url must be an absolute http(s) URL")
        return value

    @field_validator("requester_email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        if not is_valid_email(value):
            raise ValueError("requester_email must be an e-mail address")
        return value

    def to_archive_request(self) -> ArchiveRequest:
        return ArchiveRequest.build(
            url=self.url,
            language=self.metadata_language,
            title=self.metadata_title,
            description=self.metadata_description,
            subjects=self.metadata_subjects,
            is_private=self.is_private,
            browser_profile=self.browser_profile,
            requester_email=self.requester_email,
            metadata_time=self.metadata_time,
        )


class CreateAccessionResponse(BaseModel):
    message: str
    url: str


class AccessionResponse(BaseModel):
    accession: dict
    wacz_url: str

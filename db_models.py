from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, field_validator

PRIMARY = "primary"
SECONDARY = "secondary"

LinkPrecedence = Literal["primary", "secondary"]


class Contact(BaseModel):
    id: int
    phoneNumber: Optional[str] = None
    email: Optional[str] = None
    linkedId: Optional[int] = None
    linkPrecedence: LinkPrecedence
    createdAt: datetime
    updatedAt: datetime
    deletedAt: Optional[datetime] = None

    @property
    def is_primary(self) -> bool:
        return self.linkPrecedence == PRIMARY

    @property
    def seniority(self):
        """Sort key for cluster seniority. Equal timestamps fall back to id."""
        return (self.createdAt, self.id)


class IdentifyRequest(BaseModel):
    email: Optional[str] = None
    phoneNumber: Optional[str] = None

    @field_validator("phoneNumber", mode="before")
    @classmethod
    def phone_number_as_text(cls, value):
        # clients commonly send the number as a JSON number
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("email", "phoneNumber")
    @classmethod
    def empty_as_missing(cls, value):
        return value or None


class ContactResponse(BaseModel):
    primaryContactId: int
    emails: List[str]
    phoneNumbers: List[str]
    secondaryContactIds: List[int]


class FinalResponse(BaseModel):
    contact: ContactResponse


class ErrorResponse(BaseModel):
    error: str

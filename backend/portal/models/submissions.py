"""
Pydantic schemas for the decrypted form payloads.

The envelope only guarantees confidentiality; whatever comes out of it is
validated here before anything is rendered or mailed. Field names match the
browser forms (camelCase). Unknown fields are ignored and every string is
trimmed before the length checks run.
"""

from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

_FORM_CONFIG = {"extra": "ignore", "str_strip_whitespace": True}


class PqrsForm(BaseModel):
    """Petition / complaint / claim / suggestion (PQRS) request."""
    model_config = _FORM_CONFIG

    fullName: str = Field(..., min_length=1)
    email: EmailStr
    phone: str = Field(..., min_length=1)
    documentType: str = Field(..., min_length=1)
    documentNumber: str = Field(..., min_length=1)
    requestType: str = Field(..., min_length=1)
    subject: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)


class FormacionForm(BaseModel):
    """
    Training-course signup.

    identification is optional: older form versions only send name, email
    and course.
    """
    model_config = _FORM_CONFIG

    fullName: str = Field(..., min_length=1)
    email: EmailStr
    course: str = Field(..., min_length=1)
    identification: Optional[str] = None


class BienestarForm(BaseModel):
    """Wellness appointment request."""
    model_config = _FORM_CONFIG

    fullName: str = Field(..., min_length=1)
    identification: str = Field(..., min_length=1)
    email: EmailStr
    phone: str = Field(..., min_length=1)
    service: str = Field(..., min_length=1)
    serviceCatalog: str = Field(..., min_length=1)
    preferredDate: str = Field(..., min_length=1)
    preferredTime: str = Field(..., min_length=1)

    @field_validator("serviceCatalog")
    @classmethod
    def _upper_catalog(cls, value: str) -> str:
        return value.upper()

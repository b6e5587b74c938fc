"""
Input schemas for BoltStax Portal

Every write coming from the API (or from another service) is checked against
one of these Pydantic models before the database is touched. Field names
follow the camelCase wire format; services read the snake_case attributes.
"""
from __future__ import annotations

import re
from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from boltstax_portal.errors import ValidationError

EMAIL_RE = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')
COLOR_RE = re.compile(r'^#([A-Fa-f0-9]{6}|[A-Fa-f0-9]{3})$')

QuestionType = Literal['shortText', 'longText', 'singleChoice', 'multiChoice',
                       'number', 'date', 'file', 'boolean']
RelationRole = Literal['supplier', 'customer']


class Schema(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


def check_email(value: str) -> str:
    if not EMAIL_RE.match(value or ''):
        raise ValueError('Invalid email address')
    return value


EmailAddress = Annotated[str, AfterValidator(check_email)]


# =============================
# Companies & invitations
# =============================

class InviteSchema(Schema):
    name: str = Field(..., min_length=1, description="Invited company name")
    contact_name: str = Field(..., alias='contactName', min_length=1)
    primary_contact: EmailAddress = Field(..., alias='primaryContact', description="Contact email")
    tags: List[str] = []
    notes: Optional[str] = None


class RegisterSchema(Schema):
    email: EmailAddress
    password: str = Field(..., min_length=6)
    name: str = Field(..., min_length=1)
    company_name: Optional[str] = Field(None, alias='companyName')


class RedeemSchema(Schema):
    email: EmailAddress
    password: str = Field(..., min_length=6)
    name: str = Field(..., min_length=1)
    answers: Dict[str, Any] = {}


class LinkSchema(Schema):
    company_id: str = Field(..., alias='companyId', min_length=1)
    role: RelationRole


class CompanyUpdateSchema(Schema):
    name: Optional[str] = Field(None, min_length=1)
    contact_name: Optional[str] = Field(None, alias='contactName')
    email: Optional[str] = None
    notes: Optional[str] = None
    tags: Optional[List[str]] = None

    @field_validator('email')
    @classmethod
    def valid_email(cls, value):
        return check_email(value) if value is not None else value


# =============================
# Question bank
# =============================

class TagSchema(Schema):
    name: str = Field(..., min_length=1, description="Tag name")
    color: str = '#2E7D32'
    description: Optional[str] = None

    @field_validator('color')
    @classmethod
    def valid_color(cls, value):
        if not COLOR_RE.match(value):
            raise ValueError('Invalid color format')
        return value


class TagUpdateSchema(Schema):
    name: Optional[str] = Field(None, min_length=1)
    color: Optional[str] = None
    description: Optional[str] = None

    @field_validator('color')
    @classmethod
    def valid_color(cls, value):
        if value is not None and not COLOR_RE.match(value):
            raise ValueError('Invalid color format')
        return value


class QuestionOptionSchema(Schema):
    id: Optional[str] = None
    text: str
    value: str


class QuestionValidationSchema(Schema):
    min: Optional[float] = None
    max: Optional[float] = None
    pattern: Optional[str] = None
    allowed_file_types: Optional[List[str]] = Field(None, alias='allowedFileTypes')


class QuestionSchema(Schema):
    text: str = Field(..., min_length=1)
    type: QuestionType = 'shortText'
    required: bool = False
    description: Optional[str] = None
    options: Optional[List[QuestionOptionSchema]] = None
    validation: Optional[QuestionValidationSchema] = None
    tags: List[str] = []
    order: int = 0
    section_id: Optional[str] = Field(None, alias='sectionId')


class QuestionUpdateSchema(Schema):
    text: Optional[str] = Field(None, min_length=1)
    type: Optional[QuestionType] = None
    required: Optional[bool] = None
    description: Optional[str] = None
    options: Optional[List[QuestionOptionSchema]] = None
    validation: Optional[QuestionValidationSchema] = None
    tags: Optional[List[str]] = None
    order: Optional[int] = None


class SectionSchema(Schema):
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    order: int = 0
    questions: List[QuestionSchema] = []


# =============================
# Templates
# =============================

class TemplateSchema(Schema):
    title: str = Field(..., min_length=1)
    description: str = ''
    tags: List[str] = []
    sections: List[SectionSchema] = []


class TemplateUpdateSchema(Schema):
    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    tags: Optional[List[str]] = None
    sections: Optional[List[SectionSchema]] = None
    change_description: str = Field('Template updated', alias='changeDescription')


# =============================
# Product sheets & responses
# =============================

class ProductSheetSchema(Schema):
    name: str = Field(..., min_length=1, description="Sheet name")
    supplier_id: str = Field(..., alias='supplierId', min_length=1)
    selected_tags: List[str] = Field(..., alias='selectedTags', min_length=1)
    due_date: Optional[datetime] = Field(None, alias='dueDate')
    template_id: Optional[str] = Field(None, alias='templateId')


class ProductSheetUpdateSchema(Schema):
    name: Optional[str] = Field(None, min_length=1)
    selected_tags: Optional[List[str]] = Field(None, alias='selectedTags', min_length=1)
    due_date: Optional[datetime] = Field(None, alias='dueDate')


class AutosaveSchema(Schema):
    section_id: Optional[str] = Field(None, alias='sectionId')
    question_id: str = Field(..., alias='questionId', min_length=1)
    value: Any = None
    file_urls: Optional[List[str]] = Field(None, alias='fileUrls')
    user_id: Optional[str] = Field(None, alias='userId')


class SubmissionSchema(Schema):
    answers: Dict[str, Any] = {}
    user_id: Optional[str] = Field(None, alias='userId')


def validate(schema, data):
    """Parse `data` with `schema`, raising the service ValidationError on failure."""
    if isinstance(data, schema):
        return data
    try:
        return schema.model_validate(data or {})
    except PydanticValidationError as e:
        field_errors = {}
        for err in e.errors():
            field = '.'.join(str(part) for part in err['loc']) or '__root__'
            field_errors[field] = err['msg']
        raise ValidationError('Invalid input', field_errors=field_errors)

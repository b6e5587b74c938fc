from datetime import datetime
from enum import Enum
import uuid

from flask_login import UserMixin
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


def get_now():
    return datetime.utcnow()


def new_id():
    return str(uuid.uuid4())


def iso(value):
    return value.isoformat() if value else None


# Enums (plain strings keep sqlite and postgres in sync)
ROLE_ADMIN = 'admin'
ROLE_USER = 'user'

RELATION_SUPPLIER = 'supplier'
RELATION_CUSTOMER = 'customer'
RELATION_ROLES = (RELATION_SUPPLIER, RELATION_CUSTOMER)

COMPANY_STATUS_PENDING = 'pending_invitation'
COMPANY_STATUS_REGISTERED = 'registered'
COMPANY_STATUS_ACTIVE = 'active'
COMPANY_STATUS_INACTIVE = 'inactive'

INVITE_STATUS_PENDING = 'pending'
INVITE_STATUS_USED = 'used'

SHEET_STATUS_DRAFT = 'draft'
SHEET_STATUS_SENT = 'sent'
SHEET_STATUS_IN_PROGRESS = 'inProgress'
SHEET_STATUS_COMPLETED = 'completed'

# Forward-only workflow
SHEET_TRANSITIONS = {
    SHEET_STATUS_DRAFT: SHEET_STATUS_SENT,
    SHEET_STATUS_SENT: SHEET_STATUS_IN_PROGRESS,
    SHEET_STATUS_IN_PROGRESS: SHEET_STATUS_COMPLETED,
}

RESPONSE_STATUS_PENDING = 'pending'
RESPONSE_STATUS_DRAFT = 'draft'
RESPONSE_STATUS_SUBMITTED = 'submitted'
RESPONSE_STATUS_APPROVED = 'approved'
RESPONSE_STATUS_REJECTED = 'rejected'

QUESTION_TYPES = (
    'shortText', 'longText', 'singleChoice', 'multiChoice',
    'number', 'date', 'file', 'boolean',
)

DEFAULT_TAG_COLOR = '#2E7D32'


def reciprocal_role(role):
    return RELATION_CUSTOMER if role == RELATION_SUPPLIER else RELATION_SUPPLIER


def relation_field(role):
    """Name of the Company array that holds partners playing `role`."""
    return 'suppliers' if role == RELATION_SUPPLIER else 'customers'


# Many-to-Many relationship between Question and Tag
question_tag_association = db.Table('question_tag_association',
    db.Column('question_id', db.String(36), db.ForeignKey('questionnaire_question.id', ondelete='CASCADE')),
    db.Column('tag_id', db.String(36), db.ForeignKey('question_tag.id', ondelete='CASCADE'))
)


class Company(db.Model):
    __tablename__ = 'company'
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(200), nullable=False, index=True)
    contact_name = db.Column(db.String(150), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    status = db.Column(db.String(30), default=COMPANY_STATUS_ACTIVE)
    notes = db.Column(db.Text, nullable=True)

    # Relationship arrays (company ids). A partner is a supplier or a customer
    # purely by appearing here; the other side must mirror it.
    suppliers = db.Column(db.JSON, nullable=False, default=list)
    customers = db.Column(db.JSON, nullable=False, default=list)
    tags = db.Column(db.JSON, nullable=False, default=list)

    created_at = db.Column(db.DateTime, default=get_now)
    updated_at = db.Column(db.DateTime, default=get_now, onupdate=get_now)
    registered_at = db.Column(db.DateTime, nullable=True)

    users = db.relationship('User', backref='company', lazy=True)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'contactName': self.contact_name,
            'email': self.email,
            'status': self.status,
            'notes': self.notes,
            'suppliers': list(self.suppliers or []),
            'customers': list(self.customers or []),
            'tags': list(self.tags or []),
            'createdAt': iso(self.created_at),
            'updatedAt': iso(self.updated_at),
            'registeredAt': iso(self.registered_at),
        }


class User(UserMixin, db.Model):
    __tablename__ = 'user'
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(150), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(20), nullable=False, default=ROLE_USER)
    company_id = db.Column(db.String(36), db.ForeignKey('company.id'), nullable=True)
    created_at = db.Column(db.DateTime, default=get_now)
    last_login = db.Column(db.DateTime, nullable=True)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'email': self.email,
            'role': self.role,
            'companyId': self.company_id,
        }


class Invite(db.Model):
    __tablename__ = 'invite'
    code = db.Column(db.String(36), primary_key=True, default=new_id)
    inviting_company_id = db.Column(db.String(36), db.ForeignKey('company.id'), nullable=False)
    target_company_id = db.Column(db.String(36), nullable=False, index=True)
    email = db.Column(db.String(255), nullable=False)
    name = db.Column(db.String(200), nullable=False)
    contact_name = db.Column(db.String(150), nullable=False)
    role = db.Column(db.String(20), nullable=False)  # supplier, customer
    tags = db.Column(db.JSON, nullable=False, default=list)
    notes = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(20), default=INVITE_STATUS_PENDING)
    created_at = db.Column(db.DateTime, default=get_now)
    used_at = db.Column(db.DateTime, nullable=True)
    used_by = db.Column(db.String(36), nullable=True)

    inviting_company = db.relationship('Company', foreign_keys=[inviting_company_id])

    def to_dict(self):
        return {
            'code': self.code,
            'invitingCompanyId': self.inviting_company_id,
            'targetCompanyId': self.target_company_id,
            'email': self.email,
            'name': self.name,
            'contactName': self.contact_name,
            'role': self.role,
            'tags': list(self.tags or []),
            'notes': self.notes,
            'status': self.status,
            'createdAt': iso(self.created_at),
            'usedAt': iso(self.used_at),
        }


class ProductSheet(db.Model):
    __tablename__ = 'product_sheet'
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(200), nullable=False)
    supplier_id = db.Column(db.String(36), db.ForeignKey('company.id'), nullable=False, index=True)
    template_id = db.Column(db.String(36), db.ForeignKey('questionnaire_template.id'), nullable=True)
    selected_tags = db.Column(db.JSON, nullable=False, default=list)
    status = db.Column(db.String(20), nullable=False, default=SHEET_STATUS_DRAFT)
    due_date = db.Column(db.DateTime, nullable=True)
    access_token = db.Column(db.String(100), nullable=False)
    responses = db.Column(db.JSON, nullable=False, default=dict)
    created_at = db.Column(db.DateTime, default=get_now)
    updated_at = db.Column(db.DateTime, default=get_now, onupdate=get_now)
    sent_at = db.Column(db.DateTime, nullable=True)
    submitted_at = db.Column(db.DateTime, nullable=True)

    supplier = db.relationship('Company', foreign_keys=[supplier_id])
    template = db.relationship('QuestionnaireTemplate')

    def to_dict(self, include_token=False):
        data = {
            'id': self.id,
            'name': self.name,
            'supplierId': self.supplier_id,
            'templateId': self.template_id,
            'selectedTags': list(self.selected_tags or []),
            'status': self.status,
            'dueDate': iso(self.due_date),
            'responses': dict(self.responses or {}),
            'createdAt': iso(self.created_at),
            'updatedAt': iso(self.updated_at),
            'sentAt': iso(self.sent_at),
            'submittedAt': iso(self.submitted_at),
        }
        if include_token:
            data['accessToken'] = self.access_token
        return data


class CompanyProduct(db.Model):
    """Index of the sheets a company has requested."""
    __tablename__ = 'company_product'
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    company_id = db.Column(db.String(36), db.ForeignKey('company.id'), nullable=False, index=True)
    product_sheet_id = db.Column(db.String(36), nullable=False, index=True)
    added_at = db.Column(db.DateTime, default=get_now)


class Tag(db.Model):
    __tablename__ = 'question_tag'
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(100), nullable=False)
    color = db.Column(db.String(7), nullable=False, default=DEFAULT_TAG_COLOR)
    description = db.Column(db.String(500), nullable=True)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'color': self.color or DEFAULT_TAG_COLOR,
            'description': self.description,
        }


class QuestionnaireTemplate(db.Model):
    __tablename__ = 'questionnaire_template'
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    tags = db.Column(db.JSON, nullable=False, default=list)
    created_by = db.Column(db.String(36), nullable=True)
    is_archived = db.Column(db.Boolean, default=False, nullable=False)
    version = db.Column(db.Integer, default=1, nullable=False)
    created_at = db.Column(db.DateTime, default=get_now)
    updated_at = db.Column(db.DateTime, default=get_now, onupdate=get_now)

    sections = db.relationship('QuestionnaireSection', backref='template', lazy=True,
                               order_by='QuestionnaireSection.order',
                               cascade='all, delete-orphan')

    def sections_snapshot(self):
        return [section.to_dict() for section in self.sections]

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'tags': list(self.tags or []),
            'createdBy': self.created_by,
            'isArchived': self.is_archived,
            'version': self.version,
            'sections': self.sections_snapshot(),
            'createdAt': iso(self.created_at),
            'updatedAt': iso(self.updated_at),
        }


class QuestionnaireSection(db.Model):
    __tablename__ = 'questionnaire_section'
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    # NULL template: the section belongs to the shared question bank
    template_id = db.Column(db.String(36), db.ForeignKey('questionnaire_template.id'), nullable=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    order = db.Column(db.Integer, nullable=False, default=0)

    questions = db.relationship('Question', backref='section', lazy=True,
                                order_by='Question.order',
                                cascade='all, delete-orphan')

    def to_dict(self):
        return {
            'id': self.id,
            'templateId': self.template_id,
            'title': self.title,
            'description': self.description,
            'order': self.order,
            'questions': [q.to_dict() for q in self.questions],
        }


class Question(db.Model):
    __tablename__ = 'questionnaire_question'
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    section_id = db.Column(db.String(36), db.ForeignKey('questionnaire_section.id'), nullable=False)
    text = db.Column(db.Text, nullable=False)
    type = db.Column(db.String(20), nullable=False, default='shortText')
    required = db.Column(db.Boolean, default=False, nullable=False)
    description = db.Column(db.Text, nullable=True)
    options = db.Column(db.JSON, nullable=True)  # singleChoice / multiChoice
    validation = db.Column(db.JSON, nullable=True)  # min, max, pattern, allowedFileTypes
    order = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=get_now)
    updated_at = db.Column(db.DateTime, default=get_now, onupdate=get_now)

    tags = db.relationship('Tag', secondary=question_tag_association, lazy='subquery',
                           backref=db.backref('questions', lazy=True))

    @property
    def tag_ids(self):
        return [tag.id for tag in self.tags]

    def to_dict(self):
        return {
            'id': self.id,
            'sectionId': self.section_id,
            'text': self.text,
            'type': self.type,
            'required': self.required,
            'description': self.description,
            'options': self.options,
            'validation': self.validation,
            'order': self.order,
            'tags': self.tag_ids,
        }


class TemplateVersion(db.Model):
    __tablename__ = 'template_version'
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    template_id = db.Column(db.String(36), db.ForeignKey('questionnaire_template.id'), nullable=False, index=True)
    version = db.Column(db.Integer, nullable=False)
    changes = db.Column(db.JSON, nullable=False, default=list)
    sections = db.Column(db.JSON, nullable=False, default=list)  # Snapshot before the change
    updated_at = db.Column(db.DateTime, default=get_now)
    updated_by = db.Column(db.String(36), nullable=True)

    __table_args__ = (db.UniqueConstraint('template_id', 'version', name='unique_template_version'),)

    def to_dict(self):
        return {
            'id': self.id,
            'templateId': self.template_id,
            'version': self.version,
            'changes': list(self.changes or []),
            'sections': self.sections,
            'updatedAt': iso(self.updated_at),
            'updatedBy': self.updated_by,
        }


class QuestionnaireResponse(db.Model):
    __tablename__ = 'questionnaire_response'
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    template_id = db.Column(db.String(36), nullable=True)
    product_sheet_id = db.Column(db.String(36), nullable=False, index=True)
    supplier_id = db.Column(db.String(36), nullable=False, index=True)
    # [{sectionId, responses: [{questionId, value, fileUrls, updatedAt, updatedBy}], completedAt}]
    sections = db.Column(db.JSON, nullable=False, default=list)
    status = db.Column(db.String(20), nullable=False, default=RESPONSE_STATUS_PENDING)
    completion_rate = db.Column(db.Float, nullable=False, default=0.0)
    revision = db.Column(db.Integer, nullable=False)
    started_at = db.Column(db.DateTime, default=get_now)
    last_updated = db.Column(db.DateTime, default=get_now, onupdate=get_now)
    submitted_at = db.Column(db.DateTime, nullable=True)
    submitted_by = db.Column(db.String(36), nullable=True)

    __table_args__ = (db.UniqueConstraint('product_sheet_id', 'supplier_id', name='unique_sheet_response'),)
    # Compare-and-swap on every UPDATE
    __mapper_args__ = {'version_id_col': revision}

    def to_dict(self):
        return {
            'id': self.id,
            'templateId': self.template_id,
            'productSheetId': self.product_sheet_id,
            'supplierId': self.supplier_id,
            'sections': self.sections,
            'status': self.status,
            'completionRate': self.completion_rate,
            'revision': self.revision,
            'startedAt': iso(self.started_at),
            'lastUpdated': iso(self.last_updated),
            'submittedAt': iso(self.submitted_at),
            'submittedBy': self.submitted_by,
        }


class ResponseDraft(db.Model):
    __tablename__ = 'response_draft'
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    response_id = db.Column(db.String(36), nullable=False, index=True)
    question_id = db.Column(db.String(36), nullable=False)
    value = db.Column(db.JSON, nullable=True)
    file_urls = db.Column(db.JSON, nullable=True)
    saved_at = db.Column(db.DateTime, default=get_now)

    def to_dict(self):
        return {
            'id': self.id,
            'responseId': self.response_id,
            'questionId': self.question_id,
            'value': self.value,
            'fileUrls': self.file_urls,
            'savedAt': iso(self.saved_at),
        }


class SupplierAnswer(db.Model):
    __tablename__ = 'supplier_answer'
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    company_id = db.Column(db.String(36), db.ForeignKey('company.id'), nullable=False, index=True)
    product_sheet_id = db.Column(db.String(36), nullable=True, index=True)
    invite_code = db.Column(db.String(36), nullable=True)
    question_id = db.Column(db.String(36), nullable=False)
    value = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime, default=get_now)


class Notification(db.Model):
    __tablename__ = 'notification'
    id = db.Column(db.String(36), primary_key=True, default=new_id)
    company_id = db.Column(db.String(36), db.ForeignKey('company.id'), nullable=False, index=True)
    # questionnaireAssigned, questionnaireSubmitted, supplierInvited, customerInvited, supplierJoined
    type = db.Column(db.String(50), nullable=False)
    title = db.Column(db.String(200), nullable=False)
    message = db.Column(db.Text, nullable=True)
    product_sheet_id = db.Column(db.String(36), nullable=True)
    related_company_id = db.Column(db.String(36), nullable=True)
    read = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime, default=get_now)
    read_at = db.Column(db.DateTime, nullable=True)

    def to_dict(self):
        return {
            'id': self.id,
            'type': self.type,
            'title': self.title,
            'message': self.message,
            'productSheetId': self.product_sheet_id,
            'relatedCompanyId': self.related_company_id,
            'read': self.read,
            'createdAt': iso(self.created_at),
        }


class EMAIL_TEMPLATES(Enum):
    supplier_invitation = "SUPPLIER_INVITATION"
    customer_invitation = "CUSTOMER_INVITATION"
    sheet_created = "SHEET_CREATED"
    sheet_reminder = "SHEET_REMINDER"
    sheet_submitted = "SHEET_SUBMITTED"


class EmailLog(db.Model):
    __tablename__ = 'email_log'
    id = db.Column(db.Integer, primary_key=True)
    company_id = db.Column(db.String(36), nullable=True)
    email_to = db.Column(db.String(255), nullable=False)
    subject = db.Column(db.String(255), nullable=False)
    template = db.Column(db.String(50), nullable=True)  # Stores the ENUM value
    status = db.Column(db.String(50), default='sent')  # sent, failed
    provider = db.Column(db.String(50), default='resend')
    provider_message_id = db.Column(db.String(100), nullable=True)
    error_message = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, default=get_now)

    @classmethod
    def create_log(cls, email_to, subject, status, template=None, company_id=None,
                   provider='resend', error_message=None, provider_message_id=None):
        """Record a send attempt. Uses its own commit, so call it with no pending work."""
        template_val = template.value if isinstance(template, EMAIL_TEMPLATES) else template
        log = cls(
            company_id=company_id,
            email_to=email_to,
            subject=subject,
            template=template_val,
            status=status,
            provider=provider,
            error_message=error_message,
            provider_message_id=provider_message_id
        )
        db.session.add(log)
        db.session.commit()
        return log

import logging

from sqlalchemy.exc import SQLAlchemyError

from boltstax_portal.errors import NotFound, ServiceError, ValidationError
from boltstax_portal.models import (
    db, Company, Invite, Notification, SupplierAnswer, INVITE_STATUS_PENDING, RELATION_ROLES,
    reciprocal_role, relation_field, get_now
)
from boltstax_portal.schemas import CompanyUpdateSchema, validate
from boltstax_portal.utils import merge_unique, remove_items

logger = logging.getLogger(__name__)

SEARCH_LIMIT = 5


class CompanyService:
    @staticmethod
    def get_company(company_id, for_update=False):
        query = Company.query.filter_by(id=company_id)
        if for_update:
            query = query.with_for_update()
        company = query.first()
        if not company:
            raise NotFound(f"Company {company_id} not found")
        return company

    @staticmethod
    def get_suppliers(company_id):
        company = CompanyService.get_company(company_id)
        return CompanyService._load_many(company.suppliers)

    @staticmethod
    def get_customers(company_id):
        company = CompanyService.get_company(company_id)
        return CompanyService._load_many(company.customers)

    @staticmethod
    def _load_many(ids):
        if not ids:
            return []
        companies = Company.query.filter(Company.id.in_(ids)).all()
        # Keep the order of the relationship array
        by_id = {c.id: c for c in companies}
        return [by_id[i] for i in ids if i in by_id]

    @staticmethod
    def search_companies_by_name(term):
        """
        Prefix range query on the name (case-sensitive, anchored), then a
        case-insensitive substring filter over that page.
        """
        term = term or ''
        companies = Company.query.filter(
            Company.name >= term,
            Company.name <= term + '\uf8ff'
        ).order_by(Company.name).limit(SEARCH_LIMIT).all()

        needle = term.lower()
        return [c for c in companies if needle in c.name.lower()]

    @staticmethod
    def update_company(company_id, updates):
        data = validate(CompanyUpdateSchema, updates)
        company = CompanyService.get_company(company_id)

        for field in ('name', 'contact_name', 'email', 'notes'):
            value = getattr(data, field)
            if value is not None:
                setattr(company, field, value)
        if data.tags is not None:
            company.tags = list(data.tags)

        db.session.commit()
        return company

    @staticmethod
    def add_relation(company, partner_id, role):
        """Appends partner_id to the array of `company` holding `role` partners. No commit."""
        field = relation_field(role)
        setattr(company, field, merge_unique(getattr(company, field), partner_id))
        company.updated_at = get_now()

    @staticmethod
    def remove_relation(company, partner_id, role):
        field = relation_field(role)
        setattr(company, field, remove_items(getattr(company, field), partner_id))
        company.updated_at = get_now()

    @staticmethod
    def link_companies(company_a_id, company_b_id, role):
        """
        Makes B a `role` (supplier/customer) of A and A the reciprocal of B.
        Both rows are written in a single transaction.
        """
        if role not in RELATION_ROLES:
            raise ValidationError(f"Invalid relationship role: {role}", field_errors={'role': 'Invalid role'})
        if company_a_id == company_b_id:
            raise ValidationError("A company cannot be linked to itself")

        try:
            company_a = CompanyService.get_company(company_a_id, for_update=True)
            company_b = CompanyService.get_company(company_b_id, for_update=True)

            CompanyService.add_relation(company_a, company_b.id, role)
            CompanyService.add_relation(company_b, company_a.id, reciprocal_role(role))
            db.session.commit()
        except NotFound:
            db.session.rollback()
            raise
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error("Error linking companies %s -> %s (%s): %s", company_a_id, company_b_id, role, e)
            raise ServiceError("Failed to link companies") from e

        return company_a, company_b

    @staticmethod
    def unlink_companies(company_a_id, company_b_id, role):
        """Inverse of link_companies. Missing ids are ignored."""
        if role not in RELATION_ROLES:
            raise ValidationError(f"Invalid relationship role: {role}", field_errors={'role': 'Invalid role'})

        try:
            company_a = CompanyService.get_company(company_a_id, for_update=True)
            company_b = CompanyService.get_company(company_b_id, for_update=True)

            CompanyService.remove_relation(company_a, company_b.id, role)
            CompanyService.remove_relation(company_b, company_a.id, reciprocal_role(role))
            db.session.commit()
        except NotFound:
            db.session.rollback()
            raise
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error("Error unlinking companies %s -> %s (%s): %s", company_a_id, company_b_id, role, e)
            raise ServiceError("Failed to unlink companies") from e

        return company_a, company_b

    @staticmethod
    def delete_company(company_id):
        """
        Deletes a company after retracting it from every partner's arrays and
        dropping the pending invites that created it.
        """
        company = CompanyService.get_company(company_id, for_update=True)

        try:
            partner_ids = set(company.suppliers or []) | set(company.customers or [])
            # Also catch one-sided references left by older data
            for partner in Company.query.filter(Company.id != company.id).all():
                if company.id in (partner.suppliers or []) or company.id in (partner.customers or []):
                    partner_ids.add(partner.id)

            for partner in CompanyService._load_many(sorted(partner_ids)):
                partner.suppliers = remove_items(partner.suppliers, company.id)
                partner.customers = remove_items(partner.customers, company.id)
                partner.updated_at = get_now()

            Invite.query.filter_by(target_company_id=company.id, status=INVITE_STATUS_PENDING)\
                .delete(synchronize_session=False)
            Invite.query.filter_by(inviting_company_id=company.id).delete(synchronize_session=False)

            from boltstax_portal.services.sheet_service import SheetService  # Lazy Import
            SheetService.purge_company_sheets(company.id)

            Notification.query.filter_by(company_id=company.id).delete(synchronize_session=False)
            SupplierAnswer.query.filter_by(company_id=company.id).delete(synchronize_session=False)
            for user in company.users:
                user.company_id = None

            db.session.delete(company)
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error("Error deleting company %s: %s", company_id, e)
            raise ServiceError("Failed to delete company") from e

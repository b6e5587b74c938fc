from boltstax_portal.models import db, Company


TEST_CONFIG = {
    'TESTING': True,
    'SECRET_KEY': 'test-secret',
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'AUTO_CREATE_TABLES': True,
    'RESEND_API_KEY': 're_test_key',
    'EMAIL_FROM': 'noreply@boltstax.test',
    'EMAIL_NAME': 'BoltStax',
    'APP_BASE_URL': 'https://portal.boltstax.test',
    'AUTOSAVE_DEBOUNCE_SECONDS': 2.0,
    'AUTOSAVE_MAX_RETRIES': 3,
}


def make_company(name, email=None, **kwargs):
    company = Company(
        name=name,
        contact_name=kwargs.pop('contact_name', f"{name} Contact"),
        email=email or f"contact@{name.lower().replace(' ', '')}.test",
        suppliers=kwargs.pop('suppliers', []),
        customers=kwargs.pop('customers', []),
        tags=kwargs.pop('tags', []),
        **kwargs
    )
    db.session.add(company)
    db.session.commit()
    return company

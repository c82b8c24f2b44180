import pytest

from billing.config import Settings, StorageSettings
from billing.services.invoice_service import InvoiceService
from billing.services.quote_service import QuoteService
from billing.services.workflow_service import WorkflowService


@pytest.fixture
def settings(tmp_path):
    return Settings(data_dir=tmp_path, storage=StorageSettings(backup_enabled=False))


@pytest.fixture
def invoices(settings):
    return InvoiceService(settings)


@pytest.fixture
def quotes(settings):
    return QuoteService(settings)


@pytest.fixture
def workflow(settings):
    return WorkflowService(settings)


@pytest.fixture
def invoice_payload():
    # corps de requête tel que l'envoie le front (camelCase, montants en £)
    return {
        "clientName": "Jane Doe",
        "clientPhone": "07700 900123",
        "clientAddress": "12 High Street, Leeds",
        "postCode": "LS1 4AB",
        "paymentOption": "Bank transfer",
        "category": "Plumbing",
        "services": [
            {"name": "Boiler service", "price": 10, "quantity": 2},
            {"name": "Call-out", "price": 5, "quantity": 1},
        ],
        "discount": 5,
        "date": "2025-03-05",
    }


@pytest.fixture
def quote_payload():
    return {
        "clientName": "Acme Ltd",
        "clientAddress": "1 Dock Road, Hull",
        "postCode": "HU1 1AA",
        "category": "Commercial",
        "services": [{"name": "Labour", "price": 100, "quantity": 2}],
        "materials": [{"name": "Cable", "price": "12.50", "quantity": "4"}],
        "discount": 20,
        "date": "2025-11-03",
        "validUntil": "2025-12-03",
        "notes": "Access via rear gate",
    }

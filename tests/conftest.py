"""
Pytest configuration and shared fixtures for the back-office test suite.
"""
import os
import shutil
import tempfile
import uuid
from pathlib import Path
from typing import Generator

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
os.chdir(PROJECT_ROOT)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory for test files."""
    tmp_path = tempfile.mkdtemp(prefix="backoffice_test_")
    yield Path(tmp_path)
    shutil.rmtree(tmp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path, monkeypatch) -> "Config":
    """Provide a test configuration with isolated directories."""
    # No settings.json overlay from the developer's config/ directory
    monkeypatch.setenv("CONFIG_DIR", str(temp_dir / "config"))
    from config import Config

    config = Config()
    config.db_path = temp_dir / "output" / "backoffice.db"
    config.storage_dir = temp_dir / "output" / "vault"
    config.storage_signing_secret = "test-secret"
    config.classifier_enabled = False
    config.ensure_dirs()
    return config


@pytest.fixture
def test_db(test_config) -> "Database":
    """Provide a fresh test database instance."""
    from backoffice.database import Database
    return Database(test_config.db_path)


@pytest.fixture
def seeded(test_db) -> dict:
    """
    Two tenants and four companies:

      acme, acme_branch   → tenant_a   (share one scope)
      other               → tenant_b
      solo                → no tenant  (scope falls back to its own id)

    plus one contact per company.
    """
    from backoffice.database import utcnow

    ids = {name: str(uuid.uuid4()) for name in (
        "tenant_a", "tenant_b", "acme", "acme_branch", "other", "solo",
    )}
    now = utcnow()
    test_db.execute(
        "INSERT INTO tenants (id, name, slug, created_at) VALUES (?, ?, ?, ?)",
        [ids["tenant_a"], "Tenant A", "tenant-a", now],
    )
    test_db.execute(
        "INSERT INTO tenants (id, name, slug, created_at) VALUES (?, ?, ?, ?)",
        [ids["tenant_b"], "Tenant B", "tenant-b", now],
    )
    for company, tenant, name in [
        ("acme", "tenant_a", "Acme Ltd"),
        ("acme_branch", "tenant_a", "Acme Branch"),
        ("other", "tenant_b", "Other GmbH"),
        ("solo", None, "Solo Trader"),
    ]:
        test_db.execute(
            "INSERT INTO companies (id, tenant_id, name, industry, email, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            [ids[company], ids[tenant] if tenant else None, name, "retail",
             f"{company}@example.com", now],
        )
        contact_id = str(uuid.uuid4())
        ids[f"{company}_contact"] = contact_id
        test_db.execute(
            "INSERT INTO contacts (id, company_id, first_name, last_name, email, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            [contact_id, ids[company], "Ana", name.split()[0], f"ana@{company}.example", now],
        )
    return ids


@pytest.fixture
def sales(test_db, test_config) -> "SalesService":
    from backoffice.sales_service import SalesService
    return SalesService(test_db, test_config)


@pytest.fixture
def storage(test_config) -> "LocalFileStorage":
    from backoffice.storage import LocalFileStorage
    return LocalFileStorage(test_config.storage_dir, test_config.storage_signing_secret)


@pytest.fixture
def vault_service(test_db, storage, test_config) -> "VaultService":
    from backoffice.vault_service import VaultService
    return VaultService(test_db, storage, test_config)


@pytest.fixture
def sample_items() -> list[dict]:
    """Two line items: 100 x 2 at 10% off, and 50 x 1."""
    return [
        {"product_name": "Consulting", "quantity": 2, "unit": "h",
         "unit_price": 100, "discount_percent": 10},
        {"product_name": "Setup fee", "quantity": 1, "unit_price": 50},
    ]


@pytest.fixture
def invoice_payload(seeded, sample_items) -> dict:
    """A valid invoice create payload billed to the 'other' company."""
    return {
        "company_id": seeded["other"],
        "contact_id": seeded["other_contact"],
        "issue_date": "2024-03-01",
        "due_date": "2024-03-31",
        "vat_rate": 20,
        "include_vat": True,
        "notes": "Thank you for your business",
        "from_details": {"name": "Acme Ltd", "iban": "RS35000000000000000000"},
        "customer_details": {"name": "Other GmbH"},
        "items": sample_items,
    }


# Configure pytest markers
def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "api: API tests")
    config.addinivalue_line("markers", "slow: Slow tests")

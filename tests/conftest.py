"""
Shared fixtures for the test suite.
"""

import os
import shutil
import tempfile

import pytest

from usage_gateway.storage.models import Credential, Project, Tenant, TenantProject
from usage_gateway.storage.repository import initialize_schema


def _make_triple(
    tenant_id: str = "t1",
    slug: str = "acme",
    project_id: str = "proj-1",
    environment_id=None,
    api_key: str = "encrypted:key-1",
) -> TenantProject:
    tenant = Tenant(id=tenant_id, slug=slug, name=slug.title())
    credential = Credential(
        id=f"cred-{tenant_id}",
        tenant_id=tenant_id,
        api_key_encrypted=api_key,
        environment_id=environment_id,
    )
    project = Project(id=f"p-{tenant_id}-{project_id}", tenant_id=tenant_id, project_id=project_id)
    return TenantProject(tenant=tenant, credential=credential, project=project)


@pytest.fixture
def make_triple():
    """Factory for eligible (tenant, credential, project) triples."""
    return _make_triple


@pytest.fixture
def db_path():
    """Path to a freshly initialized temporary database."""
    temp_dir = tempfile.mkdtemp()
    path = os.path.join(temp_dir, "test.db")
    initialize_schema(path)
    yield path
    shutil.rmtree(temp_dir, ignore_errors=True)

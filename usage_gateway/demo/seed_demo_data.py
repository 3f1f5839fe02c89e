# usage_gateway/demo/seed_demo_data.py

import sys

from usage_gateway.config.loader import load_gateway_config_from_env
from usage_gateway.storage.directory import TenantDirectory
from usage_gateway.storage.events import EventStore
from usage_gateway.storage.repository import initialize_schema

config = load_gateway_config_from_env()
db_path = config.database.path
initialize_schema(db_path)

directory = TenantDirectory(db_path)
if directory.get_tenant("demo") is not None:
    print("Demo tenant already exists")
    sys.exit(0)

tenant = directory.add_tenant("demo", "Demo Tenant", "encrypted:VF.DM.demo-key", "production")
directory.add_project("demo", "demo-project-1", "Support bot")
directory.add_project("demo", "demo-project-2", "Sales bot")

store = EventStore(db_path)
store.add_allowed_origin(tenant.id, "http://localhost:3000")
token = store.issue_write_token(tenant.id)

print(f"Demo tenant inserted into {db_path}")
print(f"Event write token: {token.token}")

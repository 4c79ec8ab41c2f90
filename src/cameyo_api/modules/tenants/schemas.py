from pydantic import BaseModel


class TenantInfo(BaseModel):
    tenant_id: str
    schema_name: str
    client_cached: bool
    provisioning_mode: str

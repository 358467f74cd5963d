from billing_api.routes.admin import register_admin_routes
from billing_api.routes.auth import register_auth_routes
from billing_api.routes.invoices import invoices_blp

__all__ = ["invoices_blp", "register_admin_routes", "register_auth_routes"]

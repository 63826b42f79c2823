from app.models.base import Base  # noqa: F401

from app.models.api_key import ApiKey  # noqa: F401
from app.models.delivery import Delivery  # noqa: F401
from app.models.audit_log import AuditLog  # noqa: F401

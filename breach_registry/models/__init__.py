from breach_registry.db.base import Base  # noqa: F401

from . import organization  # noqa: F401
from . import incident      # noqa: F401
from . import audit_log     # noqa: F401

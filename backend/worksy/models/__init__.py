from worksy.models.assignment import Assignment  # noqa: F401
from worksy.models.session import TutoringSession  # noqa: F401
from worksy.models.chat import ChatEvent, POLICY_MODEL_TAG  # noqa: F401
from worksy.models.ai_index import AIIndex  # noqa: F401
from worksy.models.audit import AuditLog  # noqa: F401

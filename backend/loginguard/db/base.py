# backend/loginguard/db/base.py

# Import every model so Base.metadata knows about all tables.
# Alembic's env.py and the test fixtures import Base from here.
from loginguard.db.base_class import Base  # noqa: F401
from loginguard.db.models.login_attempt import LoginAttempt  # noqa: F401
from loginguard.db.models.security_event import SecurityEvent  # noqa: F401

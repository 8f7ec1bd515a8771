# breach_registry/db/base.py
from sqlalchemy.orm import declarative_base

# Single metadata for every registry table (app runtime + Alembic autogenerate)
Base = declarative_base()

# src/app/models/base.py
"""
Declarative Base
Shared by every ORM model so metadata.create_all sees all tables
"""

import uuid

from sqlalchemy.orm import declarative_base

Base = declarative_base()


def generate_uuid() -> str:
    """Default primary key for records created by this service"""
    return str(uuid.uuid4())

from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from sqlalchemy.engine.row import Row


class CustomBaseModel(BaseModel):
    """Custom base model for all schemas.
    - snake_case attributes in python, camelCase keys on the wire
    - accepts either spelling on input
    - builds from ORM objects, rows and dicts
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

    @classmethod
    def from_record(cls, record: Row[Any] | dict[str, Any] | Any):
        if isinstance(record, Row):
            return cls(**record._asdict())
        elif isinstance(record, dict):
            return cls(**record)
        elif hasattr(record, "__table__"):
            return cls(**{c.key: getattr(record, c.key) for c in record.__table__.columns})
        elif isinstance(record, BaseModel):
            return cls(**record.model_dump())
        else:
            raise ValueError(f"Invalid record type: {type(record)}")

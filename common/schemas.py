from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    """Request/response bodies: camelCase JSON, readable straight off ORM rows."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

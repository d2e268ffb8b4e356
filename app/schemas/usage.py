from pydantic import BaseModel, constr


class UsageConsumeRequest(BaseModel):
    tool: constr(strip_whitespace=True, min_length=2, max_length=80)

from typing import Literal
from pydantic import BaseModel


class CheckoutRequest(BaseModel):
    plan: Literal["day_pass", "pro_monthly", "pro_yearly"]

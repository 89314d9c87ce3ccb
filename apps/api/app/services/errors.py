from dataclasses import dataclass, field
from typing import Any


@dataclass
class DeliveryError(Exception):
    status_code: int
    code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return f"{self.code}:{self.message}"

    def to_detail(self) -> dict[str, Any]:
        return {"message": self.message, "code": self.code, **self.details}


def company_not_found() -> DeliveryError:
    return DeliveryError(
        status_code=404, code="company_not_found", message="Delivery company not found"
    )


def order_not_found() -> DeliveryError:
    return DeliveryError(status_code=404, code="order_not_found", message="Order not found")

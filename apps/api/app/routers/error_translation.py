from fastapi import HTTPException

from app.services.errors import DeliveryError


def translate_delivery_error(err: DeliveryError) -> HTTPException:
    return HTTPException(status_code=err.status_code, detail=err.to_detail())

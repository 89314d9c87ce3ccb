# Import SQLAlchemy models so they register on Base.metadata
from app.models.delivery_company import DeliveryCompany  # noqa: F401
from app.models.delivery_event import DeliveryEvent, DeliveryEventSource  # noqa: F401
from app.models.order import Order  # noqa: F401

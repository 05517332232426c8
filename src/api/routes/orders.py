"""
Order endpoints
===============

Food-delivery orders: a customer requests, a deliverer accepts and walks
the order through picked_up -> on_the_way -> delivered.  Either party
may confirm ``delivered``; every other advance is the deliverer's.
See ``engagements`` for the shared route list.
"""

from src.api.dependencies import get_order_engine
from src.api.routes.engagements import build_router
from src.api.schemas import (
    ActiveOrdersResponse,
    AvailableOrderResponse,
    OrderCreateRequest,
    OrderDetailResponse,
    OrderPage,
    OrderResponse,
)

router = build_router(
    prefix="/orders",
    engine_dependency=get_order_engine,
    create_schema=OrderCreateRequest,
    response_schema=OrderResponse,
    detail_schema=OrderDetailResponse,
    available_schema=AvailableOrderResponse,
    page_schema=OrderPage,
    active_schema=ActiveOrdersResponse,
    active_fields=("as_customer", "as_deliverer"),
)

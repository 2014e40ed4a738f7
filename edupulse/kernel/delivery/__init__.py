"""
Delivery Gateway - outbound verification and reset links.
"""

from edupulse.kernel.delivery.gateway import (
    DeliveryGateway,
    HttpEmailGateway,
    LoggingDeliveryGateway,
    build_delivery_gateway,
)

__all__ = [
    "DeliveryGateway",
    "HttpEmailGateway",
    "LoggingDeliveryGateway",
    "build_delivery_gateway",
]

"""
Infrastructure layer - external system integrations.
Keeps business logic clean from implementation details.
"""

from .booking_gateway import HttpGateway, ServiceGateway

__all__ = ["HttpGateway", "ServiceGateway"]

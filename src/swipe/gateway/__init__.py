"""Mail provider gateway contract and the HTTP implementation."""

from swipe.gateway.base import MailGateway
from swipe.gateway.http import HttpMailGateway

__all__ = ["HttpMailGateway", "MailGateway"]

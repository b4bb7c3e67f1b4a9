"""
Business services - order placement, inventory, credit requests, accounts.
"""

from storefront.services.accounts import AccountService
from storefront.services.cipher import CodeCipher, get_cipher
from storefront.services.credit_requests import CreditRequestService
from storefront.services.inventory import InventoryService
from storefront.services.orders import OrderQueryService, OrderService

__all__ = [
    "AccountService",
    "CodeCipher",
    "CreditRequestService",
    "InventoryService",
    "OrderQueryService",
    "OrderService",
    "get_cipher",
]

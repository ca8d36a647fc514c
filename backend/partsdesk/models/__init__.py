from .catalog import Product
from .inventory import InventoryMovement
from .reservations import Reservation
from .settings import Settings

__all__ = [
    'Product',
    'InventoryMovement',
    'Reservation',
    'Settings',
]

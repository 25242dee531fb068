# quickbite/__init__.py
"""
QuickBite: сервисы заказов и платежей платформы доставки еды.
"""

__version__ = "1.0.0"

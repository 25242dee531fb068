# quickbite/services/__init__.py
"""Микросервисы QuickBite: заказы и платежи."""

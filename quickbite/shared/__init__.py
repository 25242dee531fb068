# quickbite/shared/__init__.py
"""
Общий код между микросервисами.

Модули:
- events: схемы доменных событий RabbitMQ
- models: DTO, перечисления статусов и модели межсервисных контрактов
"""

__all__: list[str] = []

"""Excepciones del motor de métricas de colas."""

from __future__ import annotations


class QueueMetricsError(Exception):
    """Base de todas las excepciones del paquete."""


class InvalidMetricsInput(QueueMetricsError, ValueError):
    """Dato de entrada rechazado en la frontera (identidad o valor numérico)."""

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


class ConfigurationError(QueueMetricsError):
    """Configuración inválida."""


class StoreError(QueueMetricsError):
    """Error del key-value store."""


class StoreConnectionError(StoreError):
    """Fallo transitorio de conexión/timeout. El caller decide si reintenta."""


class ScriptError(StoreError):
    """Fallo al cargar o ejecutar un script atómico."""

    def __init__(self, script_name: str, reason: str):
        self.script_name = script_name
        super().__init__(f"Script '{script_name}' failed: {reason}")

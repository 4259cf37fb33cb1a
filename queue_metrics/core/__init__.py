"""Core module.

Estructura:
- domain/  → Modelos, identidades y excepciones
- store/   → Key-value store (Redis / memoria), claves y scripts atómicos
- clock    → Reloj inyectable
"""

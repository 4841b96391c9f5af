"""Core del pipeline: dominio, validación, motor de riesgo y notificaciones."""

"""Infraestructura: persistencia y routing multi-sitio."""

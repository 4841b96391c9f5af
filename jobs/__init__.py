"""Procesos batch y de operador."""

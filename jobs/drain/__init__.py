"""Drain runner y CLI de operador para la cola central de corrosión."""

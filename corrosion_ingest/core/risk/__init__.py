"""Cálculo de tasa de corrosión y clasificación de riesgo."""

from .engine import (
    CR_PRECISION,
    calc_corrosion_rate,
    calc_ledger_rate,
    eval_risk,
    mean,
    percentile_cont,
)

__all__ = [
    "CR_PRECISION",
    "calc_corrosion_rate",
    "calc_ledger_rate",
    "eval_risk",
    "mean",
    "percentile_cont",
]

# Metrics Module
from .prometheus import RiskMetrics, metrics, render_latest

__all__ = ["RiskMetrics", "metrics", "render_latest"]

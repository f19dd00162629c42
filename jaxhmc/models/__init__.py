"""Gauge-field theories and gauge actions."""

from .gauge import GaugeTheory, plaquette_sum, project_algebra, rectangle_sum
from .gauge_actions import (
    DBW2GaugeAction,
    IwasakiGaugeAction,
    PlaqPlusRectangleAction,
    SymanzikGaugeAction,
    WilsonGaugeAction,
    gauge_action,
)
from .smearing import StoutSmearing

__all__ = [
    "GaugeTheory",
    "plaquette_sum",
    "project_algebra",
    "rectangle_sum",
    "DBW2GaugeAction",
    "IwasakiGaugeAction",
    "PlaqPlusRectangleAction",
    "SymanzikGaugeAction",
    "WilsonGaugeAction",
    "gauge_action",
    "StoutSmearing",
]

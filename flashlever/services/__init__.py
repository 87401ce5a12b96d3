"""Service modules"""
from .simulation import Simulation, fetch_live_prices

__all__ = ["Simulation", "fetch_live_prices"]

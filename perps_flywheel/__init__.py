"""
Perps Flywheel: a leveraged perpetual-futures risk engine
"""

__version__ = "0.1.0"

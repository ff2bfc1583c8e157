"""Pool sniper - trade decision and execution control loop for new AMM pools."""

__version__ = "0.1.0"

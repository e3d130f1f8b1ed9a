"""
Standard type definitions for database models.

Provides consistent types for monetary fields across all models.
"""

from sqlalchemy import DECIMAL

# Chain amount type
# Precision: 36 digits total, 18 after decimal point
# Suitable for: SOL (9), ETH (18), TRX/USDT/USDC (6) human amounts
MoneyType = DECIMAL(36, 18)

# USD rate type
# Precision: 24 digits total, 8 after decimal point
RateType = DECIMAL(24, 8)

"""
trendcalc - Statistical trend & regime inference with AI confirmation.

Sub-packages:
    quant_stats       Stationarity, autocorrelation, regression, Hurst,
                      GARCH volatility, regime detection, trend scoring
    ai_confirmation   Market micro data, prompt building, response
                      validation, asynchronous retry-until-signal loop
"""

__version__ = "1.0.0"

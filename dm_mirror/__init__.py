"""Binance feed, orchestration and console reporting around ``dm_core``."""

"""
External Services Package

Contains integrations with external systems:
- Storage (in-memory, Google Sheets)
- Rate resolution (FX aggregators, CoinGecko)
"""

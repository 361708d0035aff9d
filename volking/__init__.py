"""
Volume King Round Engine

Runs recurring volume competitions against a single token:
- Aggregates trade volume per wallet from inbound webhook notifications
- Claims creator fees on a fixed interval
- Settles each round: treasury / reward-wallet seed / winner payout / buyback & burn
- Persists winners, burns and lifetime totals

One round at a time, every transfer confirmed before the next one starts.
"""

__version__ = "1.0.0"

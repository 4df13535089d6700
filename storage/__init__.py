"""
storage
Durable state for the trading core: the ledger (balance + trades +
settlement runs), pending recommendations and the history side channel.
All state lives in flat JSON / JSONL files under DATA_DIR.
"""

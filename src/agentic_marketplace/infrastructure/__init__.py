"""Infrastructure adapters: database, redis, settlement, webhooks."""

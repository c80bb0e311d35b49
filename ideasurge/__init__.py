"""
ideasurge core package.

Modules
───────
models         — Pydantic records (Idea, DeepDiveResult, IdeaRecord) and payload schemas
fingerprint    — content hash used as the durable dedup key
stream         — line-framed stream protocol: decoder, encoder, consumer
thinktags      — removal of inline reasoning markup
parsing        — idea (JSON / markdown dialects) and deep-dive extraction
session_store  — session-scoped idea batch and deep-dive history
library        — SQLite-backed picked/recycled idea library
lifecycle      — pick / recycle state machine with background persistence
pipeline       — stream → records driver for searches and deep dives
researcher     — Claude + web_search tool producing protocol frames
"""

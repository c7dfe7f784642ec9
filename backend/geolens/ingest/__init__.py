"""Payload decoding and geometry inspection."""

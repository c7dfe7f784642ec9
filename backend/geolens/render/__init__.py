"""Renderer-facing bookkeeping: layers, style swaps and comparison."""

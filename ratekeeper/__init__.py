"""Distributed quota coordination for shared provider rate limits."""

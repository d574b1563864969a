"""Backoff and deadline primitives used by the controller."""

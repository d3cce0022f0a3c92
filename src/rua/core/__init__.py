"""Rua core components."""

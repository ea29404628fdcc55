"""Secure chat proxy gateway for dashboard panels."""

"""Shared fixtures for client tests."""

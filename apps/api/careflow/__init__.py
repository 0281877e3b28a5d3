"""Careflow care plan lifecycle API."""

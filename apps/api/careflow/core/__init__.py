"""Core configuration, security and policy modules."""

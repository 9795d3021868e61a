"""Kernel services: flush-only writers over the kernel models."""

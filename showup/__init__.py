"""Showup backend: onboarding, credentials, deposits and escrow settlement."""

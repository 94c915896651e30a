"""Gig marketplace payment, escrow and wallet backend."""

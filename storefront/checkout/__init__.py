"""Checkout: payment selection, bank transfers, order submission."""

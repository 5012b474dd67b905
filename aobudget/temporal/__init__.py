"""Temporal PSDs, controllers and the PSD grid pipeline."""

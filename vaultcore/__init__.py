"""vaultcore: classification, policy-gated access and multi-level encryption for secrets."""

__version__ = "0.1.0"

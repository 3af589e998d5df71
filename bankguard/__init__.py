"""
BankGuard: policy-gated, retrieval-augmented decision pipeline for banking AI queries
"""
__version__ = "0.1.0"

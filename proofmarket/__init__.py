# MIT License
# Copyright (c) 2025 Hashborn

"""ProofMarket: staked providers, escrowed jobs, proof-gated settlement."""

__version__ = "0.1.0"

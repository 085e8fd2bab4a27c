"""
JAX Configuration - MUST be imported before any JAX imports.

This module sets environment variables for JAX configuration including:
- 64-bit floating point by default (covariance updates are ill-conditioned in float32)
- Suppression of XLA C++ log noise
"""
import os

# --- PRECISION ---
# Can still be switched per run via mcmc_config['use_double']
os.environ.setdefault("JAX_ENABLE_X64", "True")

# --- LOGGING ---
# Suppress CUDA/XLA C++ warnings; does not affect Python logging
os.environ.setdefault("TF_CPP_MIN_LOG_LEVEL", "2")

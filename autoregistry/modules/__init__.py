"""Core Modules: business modules shipped with the framework.

Invariants:
    - Each submodule declares MODULE_CONFIG and is registered as core
    - A user module with the same (router_name, version) replaces the core one
"""

"""Orchestration services. Import submodules directly."""

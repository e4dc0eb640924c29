"""Bundled store backends. Each module registers through a StoreFactory subclass."""

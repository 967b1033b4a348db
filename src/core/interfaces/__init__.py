"""Core contracts.

`Protocol` classes implemented by concrete adapters, so the core depends on
abstractions and tests can swap in fakes.
"""

"""Domain models and errors.

Pure, strict data structures (Pydantic v2) and the error taxonomy. The domain
knows nothing about HTTP, subprocesses or the CLI.
"""

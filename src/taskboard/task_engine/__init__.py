"""Task ordering engine for the status-partitioned board.

Provides the task model, the file-backed record store, the rank policy, the
transition authorizer and the move coordinator that ties them together.
"""

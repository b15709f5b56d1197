"""
Validation Reducer Test Suite

Test Files:
1. test_reducer_transitions.py - Each action against a known state
2. test_reducer_stale.py - Completions overtaken by newer edits
"""

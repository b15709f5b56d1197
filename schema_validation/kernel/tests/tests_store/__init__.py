"""
Validation Store Test Suite

Test Files:
1. test_root_reduce.py - Pure composition of the reducers and store actions
2. test_store_lifecycle.py - Registry events, namespace switches, fetch failures
3. test_store_editing.py - Edits, sample refreshes, saving
4. test_store_editability.py - Read-only views and the server version gate
"""
